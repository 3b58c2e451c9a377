"""Metric descriptors and the mapping from eadm counters to Prometheus families.

Every per-device counter is declared once in COUNTER_SPECS. The same table
drives schema description at registration time and emission on each scrape.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple, Union

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from .types import CounterSnapshot

NAMESPACE = "erdma"

VERSION_METRIC = f"{NAMESPACE}_driver_version"
VERSION_HELP = "ERDMA kernel driver version"
VERSION_LABELS = ["version", "node"]

DEVICE_INFO_METRIC = f"{NAMESPACE}_device_info"
DEVICE_INFO_HELP = "ERDMA device information"
DEVICE_INFO_LABELS = ["device", "node_guid", "node"]

DEVICE_LABELS = ["device", "node"]

MetricFamily = Union[CounterMetricFamily, GaugeMetricFamily]


@dataclass(frozen=True)
class MetricSpec:
    """A per-device counter: exposed name, help text and the eadm stat key it reads."""
    name: str
    documentation: str
    counter_key: str


COUNTER_SPECS: Tuple[MetricSpec, ...] = (
    # Connection management
    MetricSpec("erdma_listen_create_total", "Total number of listen create operations", "listen_create_cnt"),
    MetricSpec("erdma_listen_ipv6_total", "Total number of IPv6 listen operations", "listen_ipv6_cnt"),
    MetricSpec("erdma_listen_success_total", "Total number of successful listen operations", "listen_success_cnt"),
    MetricSpec("erdma_listen_failed_total", "Total number of failed listen operations", "listen_failed_cnt"),
    MetricSpec("erdma_listen_destroy_total", "Total number of listen destroy operations", "listen_destroy_cnt"),
    MetricSpec("erdma_accept_total", "Total number of accept operations", "accept_total_cnt"),
    MetricSpec("erdma_accept_success_total", "Total number of successful accept operations", "accept_success_cnt"),
    MetricSpec("erdma_accept_failed_total", "Total number of failed accept operations", "accept_failed_cnt"),
    MetricSpec("erdma_reject_total", "Total number of reject operations", "reject_cnt"),
    MetricSpec("erdma_reject_failed_total", "Total number of failed reject operations", "reject_failed_cnt"),
    MetricSpec("erdma_connect_total", "Total number of connect operations", "connect_total_cnt"),
    MetricSpec("erdma_connect_success_total", "Total number of successful connect operations", "connect_success_cnt"),
    MetricSpec("erdma_connect_failed_total", "Total number of failed connect operations", "connect_failed_cnt"),
    MetricSpec("erdma_connect_timeout_total", "Total number of connect timeout operations", "connect_timeout_cnt"),
    MetricSpec("erdma_connect_reset_total", "Total number of connect reset operations", "connect_reset_cnt"),
    # Command queue and async events
    MetricSpec("erdma_cmdq_submitted_total", "Total number of submitted command queue operations", "cmdq_submitted_cnt"),
    MetricSpec("erdma_cmdq_completed_total", "Total number of completed command queue operations", "cmdq_comp_cnt"),
    MetricSpec("erdma_cmdq_eq_notify_total", "Total number of command queue event queue notifications", "cmdq_eq_notify_cnt"),
    MetricSpec("erdma_cmdq_eq_event_total", "Total number of command queue event queue events", "cmdq_eq_event_cnt"),
    MetricSpec("erdma_cmdq_cq_armed_total", "Total number of command queue completion queue armed operations", "cmdq_cq_armed_cnt"),
    MetricSpec("erdma_aeq_event_total", "Total number of async event queue events", "erdma_aeq_event_cnt"),
    MetricSpec("erdma_aeq_notify_total", "Total number of async event queue notifications", "erdma_aeq_notify_cnt"),
    # Verbs
    MetricSpec("erdma_verbs_alloc_mr_total", "Total number of verbs memory region allocations", "verbs_alloc_mr_cnt"),
    MetricSpec("erdma_verbs_alloc_mr_failed_total", "Total number of failed verbs memory region allocations", "verbs_alloc_mr_failed_cnt"),
    MetricSpec("erdma_verbs_alloc_pd_total", "Total number of verbs protection domain allocations", "verbs_alloc_pd_cnt"),
    MetricSpec("erdma_verbs_alloc_pd_failed_total", "Total number of failed verbs protection domain allocations", "verbs_alloc_pd_failed_cnt"),
    MetricSpec("erdma_verbs_alloc_uctx_total", "Total number of verbs user context allocations", "verbs_alloc_uctx_cnt"),
    MetricSpec("erdma_verbs_alloc_uctx_failed_total", "Total number of failed verbs user context allocations", "verbs_alloc_uctx_failed_cnt"),
    MetricSpec("erdma_verbs_create_cq_total", "Total number of verbs completion queue creations", "verbs_create_cq_cnt"),
    MetricSpec("erdma_verbs_create_cq_failed_total", "Total number of failed verbs completion queue creations", "verbs_create_cq_failed_cnt"),
    MetricSpec("erdma_verbs_create_qp_total", "Total number of verbs queue pair creations", "verbs_create_qp_cnt"),
    MetricSpec("erdma_verbs_create_qp_failed_total", "Total number of failed verbs queue pair creations", "verbs_create_qp_failed_cnt"),
    MetricSpec("erdma_verbs_dealloc_pd_total", "Total number of verbs protection domain deallocations", "verbs_dealloc_pd_cnt"),
    MetricSpec("erdma_verbs_dealloc_uctx_total", "Total number of verbs user context deallocations", "verbs_dealloc_uctx_cnt"),
    MetricSpec("erdma_verbs_dereg_mr_total", "Total number of verbs memory region deregistrations", "verbs_dereg_mr_cnt"),
    MetricSpec("erdma_verbs_dereg_mr_failed_total", "Total number of failed verbs memory region deregistrations", "verbs_dereg_mr_failed_cnt"),
    MetricSpec("erdma_verbs_destroy_cq_total", "Total number of verbs completion queue destructions", "verbs_destroy_cq_cnt"),
    MetricSpec("erdma_verbs_destroy_cq_failed_total", "Total number of failed verbs completion queue destructions", "verbs_destroy_cq_failed_cnt"),
    MetricSpec("erdma_verbs_destroy_qp_total", "Total number of verbs queue pair destructions", "verbs_destroy_qp_cnt"),
    MetricSpec("erdma_verbs_destroy_qp_failed_total", "Total number of failed verbs queue pair destructions", "verbs_destroy_qp_failed_cnt"),
    MetricSpec("erdma_verbs_get_dma_mr_total", "Total number of verbs DMA memory region get operations", "verbs_get_dma_mr_cnt"),
    MetricSpec("erdma_verbs_get_dma_mr_failed_total", "Total number of failed verbs DMA memory region get operations", "verbs_get_dma_mr_failed_cnt"),
    MetricSpec("erdma_verbs_reg_usr_mr_total", "Total number of verbs user memory region registrations", "verbs_reg_usr_mr_cnt"),
    MetricSpec("erdma_verbs_reg_usr_mr_failed_total", "Total number of failed verbs user memory region registrations", "verbs_reg_usr_mr_failed_cnt"),
    # Hardware datapath
    MetricSpec("erdma_hw_tx_requests_total", "Total number of hardware transmit requests", "hw_tx_reqs_cnt"),
    MetricSpec("erdma_hw_tx_packets_total", "Total number of hardware transmit packets", "hw_tx_packets_cnt"),
    MetricSpec("erdma_hw_tx_bytes_total", "Total number of hardware transmit bytes", "hw_tx_bytes_cnt"),
    MetricSpec("erdma_hw_disable_drop_total", "Total number of hardware disable drop operations", "hw_disable_drop_cnt"),
    MetricSpec("erdma_hw_bps_limit_drop_total", "Total number of hardware BPS limit drops", "hw_bps_limit_drop_cnt"),
    MetricSpec("erdma_hw_pps_limit_drop_total", "Total number of hardware PPS limit drops", "hw_pps_limit_drop_cnt"),
    MetricSpec("erdma_hw_rx_packets_total", "Total number of hardware receive packets", "hw_rx_packets_cnt"),
    MetricSpec("erdma_hw_rx_bytes_total", "Total number of hardware receive bytes", "hw_rx_bytes_cnt"),
    MetricSpec("erdma_hw_rx_disable_drop_total", "Total number of hardware receive disable drops", "hw_rx_disable_drop_cnt"),
    MetricSpec("erdma_hw_rx_bps_limit_drop_total", "Total number of hardware receive BPS limit drops", "hw_rx_bps_limit_drop_cnt"),
    MetricSpec("erdma_hw_rx_pps_limit_drop_total", "Total number of hardware receive PPS limit drops", "hw_rx_pps_limit_drop_cnt"),
)


def version_family() -> GaugeMetricFamily:
    return GaugeMetricFamily(VERSION_METRIC, VERSION_HELP, labels=VERSION_LABELS)


def device_info_family() -> GaugeMetricFamily:
    return GaugeMetricFamily(DEVICE_INFO_METRIC, DEVICE_INFO_HELP, labels=DEVICE_INFO_LABELS)


def new_counter_families() -> Dict[str, CounterMetricFamily]:
    """Return one empty counter family per MetricSpec, keyed by counter key."""
    return {
        spec.counter_key: CounterMetricFamily(spec.name, spec.documentation, labels=DEVICE_LABELS)
        for spec in COUNTER_SPECS
    }


def describe_families() -> List[MetricFamily]:
    """Return sample-less families for every descriptor, used for registration."""
    return [version_family(), device_info_family(), *new_counter_families().values()]


def add_device_stats(
    families: Dict[str, CounterMetricFamily],
    stats: CounterSnapshot,
    device: str,
    node: str
) -> int:
    """
    Add one sample per known counter present in the snapshot.

    Keys missing from the snapshot are skipped (not every firmware exposes
    every counter) and keys with no MetricSpec are ignored.

    Args:
        families: Families created by new_counter_families()
        stats: Parsed counters for the device
        device: Device label value
        node: Node label value

    Returns:
        Number of samples added
    """
    added = 0
    for key, family in families.items():
        if key not in stats:
            continue
        family.add_metric([device, node], float(stats[key]))
        added += 1
    return added
