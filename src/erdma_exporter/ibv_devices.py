"""
Module for discovering ERDMA devices via the ibv_devices command.
"""
import logging
from typing import List, Optional

from .commands import run_command
from .types import Device

logger = logging.getLogger(__name__)

IBV_DEVICES = "ibv_devices"
IBV_DEVICES_ENV = "ERDMA_IBV_DEVICES_BIN"

# "    device                 node GUID" followed by a dashed rule
HEADER_LINES = 2


def parse_devices(output: str) -> List[Device]:
    """
    Parse `ibv_devices` output into a list of devices.

    The first two lines are the table header and are always skipped. Every
    following line with at least two whitespace separated fields is a
    device; anything else is ignored.

    Args:
        output: Decoded stdout of ibv_devices

    Returns:
        Devices in the order they were listed
    """
    devices: List[Device] = []
    for line_num, line in enumerate(output.splitlines(), start=1):
        if line_num <= HEADER_LINES:
            continue
        fields = line.split()
        if not fields:
            continue
        if len(fields) < 2:
            logger.debug(f"Line {line_num} does not match device format: {line.strip()!r}")
            continue
        devices.append(Device(name=fields[0], guid=fields[1]))
    return devices


def get_devices(timeout: Optional[float] = None) -> List[Device]:
    """
    Run ibv_devices and return the devices it lists.

    Raises:
        CommandError: if ibv_devices cannot be run; no partial list is returned
    """
    output = run_command(IBV_DEVICES, timeout=timeout, env_var=IBV_DEVICES_ENV)
    text = output.decode("utf-8", errors="replace")
    logger.debug(f"ibv_devices raw output:\n{text}")

    devices = parse_devices(text)
    logger.debug(f"Total devices found: {len(devices)}")
    return devices
