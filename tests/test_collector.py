from __future__ import annotations
from typing import Dict, List
from unittest.mock import patch

import pytest

from erdma_exporter.collector import ErdmaCollector, get_node_name
from erdma_exporter.types import CommandError, CommandTimeoutError, Device, VersionNotFoundError

DEVICES = [
    Device("erdma_0", "02163efffe5030b3"),
    Device("erdma_1", "02163efffe5030b4"),
    Device("erdma_2", "02163efffe5030b5"),
]


def _samples(collector: ErdmaCollector) -> List:
    return [s for family in collector.collect() for s in family.samples]


def _by_name(samples, name: str) -> List:
    return [s for s in samples if s.name == name]


def _stats(device: str, timeout=None) -> Dict[str, int]:
    if device == "erdma_1":
        raise CommandError(["eadm", "stat", "-d", device], "exit status 1")
    return {"listen_create_cnt": 5, "connect_total_cnt": 9}


@pytest.fixture(autouse=True)
def node_name(monkeypatch):
    monkeypatch.setenv("NODE_NAME", "node-a")


def test_node_name_from_env():
    assert get_node_name() == "node-a"


def test_node_name_falls_back_to_hostname(monkeypatch):
    monkeypatch.delenv("NODE_NAME")
    with patch("erdma_exporter.collector.socket.gethostname", return_value="host-1"):
        assert get_node_name() == "host-1"


def test_node_name_sentinel(monkeypatch):
    monkeypatch.delenv("NODE_NAME")
    with patch("erdma_exporter.collector.socket.gethostname", side_effect=OSError("boom")):
        assert get_node_name() == "unknown"


@patch("erdma_exporter.eadm.get_device_stats", side_effect=_stats)
@patch("erdma_exporter.ibv_devices.get_devices", return_value=DEVICES)
@patch("erdma_exporter.eadm.get_version", return_value="0.2.38")
def test_collect_isolates_failing_device(mock_version, mock_devices, mock_stats):
    samples = _samples(ErdmaCollector(timeout=4))

    version = _by_name(samples, "erdma_driver_version")
    assert len(version) == 1
    assert version[0].labels == {"version": "0.2.38", "node": "node-a"}
    assert version[0].value == 1.0

    info = _by_name(samples, "erdma_device_info")
    assert [s.labels["device"] for s in info] == ["erdma_0", "erdma_1", "erdma_2"]
    assert info[1].labels == {"device": "erdma_1", "node_guid": "02163efffe5030b4", "node": "node-a"}

    listen = _by_name(samples, "erdma_listen_create_total")
    assert sorted(s.labels["device"] for s in listen) == ["erdma_0", "erdma_2"]
    assert all(s.value == 5.0 for s in listen)
    assert len(_by_name(samples, "erdma_connect_total")) == 2

    # devices are queried in listing order with the configured deadline
    assert [c.args[0] for c in mock_stats.call_args_list] == ["erdma_0", "erdma_1", "erdma_2"]
    assert all(c.kwargs["timeout"] == 4 for c in mock_stats.call_args_list)


@patch("erdma_exporter.eadm.get_device_stats", return_value={"reject_cnt": 1})
@patch("erdma_exporter.ibv_devices.get_devices", return_value=DEVICES[:1])
@patch("erdma_exporter.eadm.get_version", side_effect=VersionNotFoundError("no version"))
def test_collect_without_version(mock_version, mock_devices, mock_stats):
    samples = _samples(ErdmaCollector())
    assert _by_name(samples, "erdma_driver_version") == []
    assert len(_by_name(samples, "erdma_device_info")) == 1
    assert _by_name(samples, "erdma_reject_total")[0].value == 1.0


@patch("erdma_exporter.eadm.get_device_stats")
@patch("erdma_exporter.ibv_devices.get_devices", side_effect=CommandTimeoutError(["ibv_devices"], "timed out"))
@patch("erdma_exporter.eadm.get_version", return_value="0.2.38")
def test_collect_enumeration_failure_keeps_version(mock_version, mock_devices, mock_stats):
    samples = _samples(ErdmaCollector())
    assert [s.name for s in samples] == ["erdma_driver_version"]
    mock_stats.assert_not_called()


@patch("erdma_exporter.eadm.get_device_stats")
@patch("erdma_exporter.ibv_devices.get_devices", side_effect=CommandError(["ibv_devices"], "not found"))
@patch("erdma_exporter.eadm.get_version", side_effect=CommandError(["eadm", "ver"], "not found"))
def test_collect_everything_failing_is_empty(mock_version, mock_devices, mock_stats):
    assert list(ErdmaCollector().collect()) == []


@patch("erdma_exporter.eadm.get_device_stats", return_value={})
@patch("erdma_exporter.ibv_devices.get_devices", return_value=[])
@patch("erdma_exporter.eadm.get_version", return_value="0.2.38")
def test_collect_no_devices(mock_version, mock_devices, mock_stats):
    samples = _samples(ErdmaCollector())
    assert [s.name for s in samples] == ["erdma_driver_version"]


def test_describe_does_not_run_commands():
    with patch("erdma_exporter.commands.subprocess.run") as mock_run:
        families = ErdmaCollector().describe()
    mock_run.assert_not_called()
    names = {family.name for family in families}
    assert "erdma_driver_version" in names
    assert "erdma_device_info" in names


@patch("erdma_exporter.eadm.get_device_stats", return_value={"accept_total_cnt": 1})
@patch("erdma_exporter.ibv_devices.get_devices", return_value=[Device("erdma_0", "g0")])
@patch("erdma_exporter.eadm.get_version", return_value="0.2.38")
def test_collector_keeps_no_state_besides_timeout(mock_version, mock_devices, mock_stats):
    collector = ErdmaCollector(timeout=3)
    list(collector.collect())
    assert vars(collector) == {"timeout": 3}
    assert [name for name in vars(ErdmaCollector) if not name.startswith("_")] == ["describe", "collect"]
