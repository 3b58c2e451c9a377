from __future__ import annotations

import logging
import os
import platform
import socket
import time
from typing import Any, Dict, Optional

import distro
from prometheus_client import (
    CollectorRegistry,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from . import eadm, ibv_devices
from .collector import ErdmaCollector, get_node_name
from .commands import find_command
from .types import CollectorError

log = logging.getLogger("erdma-exporter")

CHECK_PATHS = [
    "/dev/infiniband",
    "/sys/class/infiniband",
    "/sys/bus/pci",
    "/sys/devices",
    "/usr/bin",
    "/usr/sbin",
]
INFINIBAND_CLASS = "/sys/class/infiniband"

# Counters summarised per device in the startup log
SUMMARY_GROUPS = {
    "Listen": ["listen_create_cnt", "listen_success_cnt", "listen_failed_cnt", "listen_destroy_cnt"],
    "Accept": ["accept_total_cnt", "accept_success_cnt", "accept_failed_cnt"],
    "Connect": [
        "connect_total_cnt", "connect_success_cnt", "connect_failed_cnt",
        "connect_timeout_cnt", "connect_reset_cnt",
    ],
    "Hardware TX": ["hw_tx_reqs_cnt", "hw_tx_packets_cnt", "hw_tx_bytes_cnt"],
    "Hardware RX": ["hw_rx_packets_cnt", "hw_rx_bytes_cnt"],
}


def build_registry(timeout: Optional[float] = None) -> CollectorRegistry:
    """Create a registry holding the ERDMA collector and the standard process metrics.

    Raises:
        ValueError: if the metric schema cannot be registered (duplicate names)
    """
    registry = CollectorRegistry()
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    GCCollector(registry=registry)
    registry.register(ErdmaCollector(timeout=timeout))
    return registry


def render_metrics(registry: CollectorRegistry) -> bytes:
    """Run a scrape against the registry and return the text exposition."""
    return generate_latest(registry)


def collect_system_info() -> Dict[str, Any]:
    """Collect system information."""
    return {
        "hostname": socket.gethostname(),
        "kernel": {
            "release": platform.release(),
            "version": platform.version()
        },
        "lsb": {
            "id": distro.id(),
            "release": distro.version(),
            "codename": distro.codename(),
            "description": distro.name(pretty=True)
        },
        "uptime": time.monotonic()
    }


def _log_paths() -> None:
    log.info("Checking required paths:")
    for path in CHECK_PATHS:
        if not os.path.exists(path):
            log.info(f"  x {path} (not found)")
            continue
        if not os.path.isdir(path):
            log.info(f"  ok {path} (file exists)")
            continue
        log.info(f"  ok {path} (directory exists)")
        if path != INFINIBAND_CLASS:
            continue
        try:
            entries = sorted(os.listdir(path))
        except OSError as e:
            log.warning(f"    Cannot list {path}: {e}")
            continue
        if not entries:
            log.warning(f"    {path} is empty (no devices found)")
            continue
        log.info(f"    Found {len(entries)} entries in {path}:")
        for entry in entries:
            log.info(f"      - {entry}")


def _log_ibv_devices_binary() -> None:
    path = find_command(ibv_devices.IBV_DEVICES, ibv_devices.IBV_DEVICES_ENV)
    log.info(f"Using ibv_devices command: {path}")
    if not os.path.isfile(path):
        log.warning("ibv_devices not found on this host (erdma-tools should be installed)")
    elif not os.access(path, os.X_OK):
        log.warning(f"{path} is not executable")


def log_startup_info(timeout: Optional[float] = None) -> None:
    """Log node, driver and device information once at startup.

    Every step is best effort; failures are logged and never raised.
    """
    rule = "=" * 80
    log.info(rule)
    log.info("ERDMA Exporter Initial Information")
    log.info(rule)

    log.info(f"Node Name: {get_node_name()}")

    try:
        log.info(f"ERDMA Driver Version: {eadm.get_version(timeout=timeout)}")
    except CollectorError as e:
        log.warning(f"Failed to get ERDMA driver version: {e}")

    try:
        info = collect_system_info()
        log.info(
            f"Host: {info['hostname']} kernel {info['kernel']['release']} "
            f"({info['lsb']['description'] or info['lsb']['id'] or 'unknown distro'})"
        )
    except OSError as e:
        log.warning(f"Failed to collect system info: {e}")

    _log_paths()
    _log_ibv_devices_binary()

    log.info("Attempting to discover ERDMA devices...")
    try:
        devices = ibv_devices.get_devices(timeout=timeout)
    except CollectorError as e:
        log.warning(f"Failed to get ERDMA devices: {e}")
        log.info(rule)
        return

    log.info(f"Found {len(devices)} ERDMA device(s):")
    for i, device in enumerate(devices, start=1):
        log.info(f"  Device {i}: {device.name} (GUID: {device.guid})")
        try:
            stats = eadm.get_device_stats(device.name, timeout=timeout)
        except CollectorError as e:
            log.warning(f"    Failed to get statistics: {e}")
            continue
        log.info("    Statistics:")
        for group, keys in SUMMARY_GROUPS.items():
            values = ", ".join(
                f"{key.rsplit('_cnt', 1)[0]}={stats.get(key, 0)}" for key in keys
            )
            log.info(f"      {group}: {values}")

    log.info(rule)
