"""Prometheus collector for ERDMA devices."""
from __future__ import annotations

import logging
import os
import socket
from typing import Iterator, List, Optional

from . import eadm, ibv_devices
from .metrics import (
    MetricFamily,
    add_device_stats,
    describe_families,
    device_info_family,
    new_counter_families,
    version_family,
)
from .types import CollectorError, CommandError

logger = logging.getLogger(__name__)

NODE_NAME_ENV = "NODE_NAME"
UNKNOWN_NODE = "unknown"


def get_node_name() -> str:
    """Get the node name from NODE_NAME (set by Kubernetes) or the hostname."""
    node_name = os.environ.get(NODE_NAME_ENV)
    if node_name:
        return node_name
    try:
        return socket.gethostname() or UNKNOWN_NODE
    except OSError:
        return UNKNOWN_NODE


class ErdmaCollector:
    """Collects ERDMA driver and device metrics on every scrape.

    Nothing is cached between scrapes; each call to collect() runs the
    external tools again. All per-scrape state is local to collect(), so
    overlapping scrapes are safe.
    """

    def __init__(self, timeout: Optional[float] = None):
        """Initialize the collector.

        Args:
            timeout: Deadline in seconds for each external command.
        """
        self.timeout = timeout

    def describe(self) -> List[MetricFamily]:
        return describe_families()

    def collect(self) -> Iterator[MetricFamily]:
        node = get_node_name()

        version = version_family()
        try:
            driver_version = eadm.get_version(timeout=self.timeout)
            version.add_metric([driver_version, node], 1.0)
        except CollectorError as e:
            logger.warning(f"Failed to get ERDMA driver version: {e}")
        if version.samples:
            yield version

        try:
            devices = ibv_devices.get_devices(timeout=self.timeout)
        except CommandError as e:
            logger.warning(f"Failed to get ERDMA devices: {e}")
            return

        device_info = device_info_family()
        counters = new_counter_families()
        for device in devices:
            device_info.add_metric([device.name, device.guid, node], 1.0)

            try:
                stats = eadm.get_device_stats(device.name, timeout=self.timeout)
            except CommandError as e:
                logger.warning(f"Failed to get statistics for device {device.name}: {e}")
                continue

            added = add_device_stats(counters, stats, device.name, node)
            logger.debug(f"Emitted {added} counters for device {device.name}")

        if device_info.samples:
            yield device_info
        for family in counters.values():
            if family.samples:
                yield family
