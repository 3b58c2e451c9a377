"""
Module for running the external ERDMA diagnostic tools.
Provides lookup of the tool binaries and a single way of invoking them.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
from typing import List, Optional, Sequence

from .types import CommandError, CommandTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
TIMEOUT_ENV = "ERDMA_COMMAND_TIMEOUT"


def default_timeout() -> Optional[float]:
    """Return the command deadline from the environment, or DEFAULT_TIMEOUT.

    A value of 0 (or below) disables the deadline.
    """
    raw = os.environ.get(TIMEOUT_ENV)
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {TIMEOUT_ENV}={raw!r}, using {DEFAULT_TIMEOUT}s")
        return DEFAULT_TIMEOUT
    return value if value > 0 else None


def find_command(name: str, env_var: Optional[str] = None) -> str:
    """Locate an executable.

    Args:
        name: Bare command name (e.g. 'eadm')
        env_var: Optional environment variable holding an explicit path

    Returns:
        The override path, the PATH match, or the bare name so that the
        lookup is retried when the command is invoked.
    """
    if env_var:
        p = os.environ.get(env_var)
        if p and os.path.isfile(p) and os.access(p, os.X_OK):
            return p
    w = shutil.which(name)
    if w:
        return w
    return name


def run_command(
    name: str,
    args: Sequence[str] = (),
    timeout: Optional[float] = None,
    env_var: Optional[str] = None
) -> bytes:
    """
    Run an external command and return its standard output.

    Args:
        name: Command name, resolved with find_command()
        args: Arguments passed to the command
        timeout: Deadline in seconds, None for no deadline
        env_var: Optional environment variable overriding the binary path

    Returns:
        Raw stdout bytes

    Raises:
        CommandTimeoutError: if the command exceeds the deadline
        CommandError: if the command is missing or exits non-zero
    """
    cmd: List[str] = [find_command(name, env_var), *args]
    logger.debug(f"Running command: {' '.join(cmd)}")

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            timeout=timeout,
            check=False
        )
    except subprocess.TimeoutExpired as e:
        stderr = (e.stderr or b"").decode("utf-8", errors="replace")
        raise CommandTimeoutError(cmd, f"timed out after {timeout}s", stderr=stderr) from e
    except OSError as e:
        raise CommandError(cmd, str(e)) from e

    stderr = result.stderr.decode("utf-8", errors="replace")
    if result.returncode != 0:
        raise CommandError(
            cmd,
            f"exit status {result.returncode}",
            returncode=result.returncode,
            stderr=stderr
        )

    if stderr:
        logger.debug(f"{cmd[0]} stderr: {stderr.strip()}")
    return result.stdout
