"""
Module for querying the ERDMA driver via the eadm command.
Provides the kernel driver version and per-device statistics.
"""
import logging
import re
from typing import Optional

from .commands import run_command
from .types import CounterSnapshot, VersionNotFoundError

logger = logging.getLogger(__name__)

EADM = "eadm"
EADM_ENV = "ERDMA_EADM_BIN"

VERSION_RE = re.compile(r"Query kernel driver version:\s+(\S+)")
DIGITS_RE = re.compile(r"[0-9]+")
UINT64_MAX = 2 ** 64 - 1


def parse_version(output: str) -> str:
    """
    Extract the driver version from `eadm ver` output.

    Args:
        output: Decoded stdout, e.g. "Query kernel driver version: 0.2.38"

    Returns:
        The version token

    Raises:
        VersionNotFoundError: if no version line is present
    """
    match = VERSION_RE.search(output)
    if not match:
        raise VersionNotFoundError("version not found in eadm ver output")
    return match.group(1)


def _parse_uint64(value: str) -> Optional[int]:
    """Parse a plain decimal string into an unsigned 64-bit integer, or None."""
    if not DIGITS_RE.fullmatch(value):
        return None
    number = int(value)
    if number > UINT64_MAX:
        return None
    return number


def parse_stats(output: str) -> CounterSnapshot:
    """
    Parse `eadm stat` output into a counter snapshot.

    Lines look like "listen_create_cnt : 0". Lines without exactly one colon,
    or whose value is not an unsigned 64-bit decimal, are skipped.

    Args:
        output: Decoded stdout of eadm stat

    Returns:
        Mapping of counter name to value; empty if nothing could be parsed
    """
    stats: CounterSnapshot = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue

        parts = line.split(":")
        if len(parts) != 2:
            continue

        key = parts[0].strip()
        value = _parse_uint64(parts[1].strip())
        if value is None:
            continue

        stats[key] = value
    return stats


def get_version(timeout: Optional[float] = None) -> str:
    """
    Get the ERDMA kernel driver version.

    Raises:
        CommandError: if eadm cannot be run
        VersionNotFoundError: if the output has no version line
    """
    output = run_command(EADM, ["ver"], timeout=timeout, env_var=EADM_ENV)
    return parse_version(output.decode("utf-8", errors="replace"))


def get_device_stats(device: str, timeout: Optional[float] = None) -> CounterSnapshot:
    """
    Get the statistics counters for one device.

    Args:
        device: Device name as listed by ibv_devices (e.g. 'erdma_0')
        timeout: Deadline in seconds for the eadm call

    Raises:
        CommandError: if eadm cannot be run for this device
    """
    output = run_command(EADM, ["stat", "-d", device], timeout=timeout, env_var=EADM_ENV)
    stats = parse_stats(output.decode("utf-8", errors="replace"))
    logger.debug(f"Parsed {len(stats)} counters for device {device}")
    return stats
