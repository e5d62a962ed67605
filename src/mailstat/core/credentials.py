"""Mailbox password retrieval through a user-supplied command."""

from __future__ import annotations

import logging
import shlex
import subprocess

from mailstat.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


def resolve_password(command: str, timeout_seconds: float = 30.0) -> str:
    """Run a password command (e.g. ``pass show mailstat/me@example.com``).

    The command is split with shlex and executed without a shell. Only the
    first line of stdout is used, matching how password stores print the
    secret followed by metadata.

    Args:
        command: Command line to execute.
        timeout_seconds: Kill the command after this many seconds.

    Returns:
        The password.

    Raises:
        AuthenticationError: If the command cannot run, fails, or prints nothing.
    """
    argv = shlex.split(command)
    if not argv:
        raise AuthenticationError("Password command is empty")

    try:
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
        )
    except FileNotFoundError as e:
        raise AuthenticationError(f"Password command not found: {argv[0]}") from e
    except subprocess.TimeoutExpired as e:
        raise AuthenticationError(
            f"Password command timed out after {timeout_seconds:.0f}s"
        ) from e

    if completed.returncode != 0:
        stderr = completed.stderr.strip()
        raise AuthenticationError(
            f"Password command exited with status {completed.returncode}: {stderr}"
        )

    lines = completed.stdout.splitlines()
    password = lines[0].strip() if lines else ""
    if not password:
        raise AuthenticationError("Password command produced no output")

    logger.debug("Resolved password via %s", argv[0])
    return password
