from __future__ import annotations
import subprocess
from unittest.mock import patch

from erdma_exporter.core import build_registry, collect_system_info, log_startup_info, render_metrics
from erdma_exporter.types import CommandError, Device

HEADER = "device node GUID\n------ ---------\n"


@patch("erdma_exporter.eadm.get_device_stats", return_value={"hw_rx_bytes_cnt": 4096})
@patch("erdma_exporter.ibv_devices.get_devices", return_value=[Device("erdma_0", "02163efffe5030b3")])
@patch("erdma_exporter.eadm.get_version", return_value="0.2.38")
def test_render_metrics_exposition(mock_version, mock_devices, mock_stats, monkeypatch):
    monkeypatch.setenv("NODE_NAME", "node-a")
    text = render_metrics(build_registry(timeout=1)).decode()

    assert 'erdma_driver_version{node="node-a",version="0.2.38"} 1.0' in text
    assert 'erdma_device_info{device="erdma_0",node="node-a",node_guid="02163efffe5030b3"} 1.0' in text
    assert 'erdma_hw_rx_bytes_total{device="erdma_0",node="node-a"} 4096.0' in text
    assert "# TYPE erdma_hw_rx_bytes_total counter" in text
    assert "erdma_listen_create_total{" not in text


def test_build_registry_runs_full_pipeline_through_subprocess(monkeypatch):
    outputs = {
        "ver": b"Query kernel driver version: 0.2.38\n",
        "stat": b"listen_create_cnt : 11\ngarbage\n",
    }

    def fake_run(cmd, **kwargs):
        if cmd[0].endswith("ibv_devices"):
            stdout = (HEADER + "erdma_0 02163efffe5030b3\n").encode()
        else:
            stdout = outputs[cmd[1]]
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr=b"")

    monkeypatch.setenv("NODE_NAME", "n1")
    with patch("erdma_exporter.commands.subprocess.run", side_effect=fake_run):
        text = render_metrics(build_registry()).decode()

    assert 'erdma_listen_create_total{device="erdma_0",node="n1"} 11.0' in text
    assert 'version="0.2.38"' in text


def test_collect_system_info_shape():
    info = collect_system_info()
    assert set(info) == {"hostname", "kernel", "lsb", "uptime"}
    assert "release" in info["kernel"]


@patch("erdma_exporter.core.distro.name", return_value="Alibaba Cloud Linux 3")
@patch("erdma_exporter.core.distro.codename", return_value="Soaring Falcon")
@patch("erdma_exporter.core.distro.version", return_value="3")
@patch("erdma_exporter.core.distro.id", return_value="alinux")
def test_collect_system_info_lsb_from_distro(mock_id, mock_version, mock_codename, mock_name):
    assert collect_system_info()["lsb"] == {
        "id": "alinux",
        "release": "3",
        "codename": "Soaring Falcon",
        "description": "Alibaba Cloud Linux 3",
    }
    mock_name.assert_called_once_with(pretty=True)


@patch("erdma_exporter.eadm.get_device_stats", side_effect=CommandError(["eadm"], "exit status 1"))
@patch("erdma_exporter.ibv_devices.get_devices", return_value=[Device("erdma_0", "guid")])
@patch("erdma_exporter.eadm.get_version", side_effect=CommandError(["eadm", "ver"], "missing"))
def test_log_startup_info_never_raises(mock_version, mock_devices, mock_stats, caplog):
    caplog.set_level("INFO")
    log_startup_info(timeout=1)
    assert "Failed to get ERDMA driver version" in caplog.text
    assert "Device 1: erdma_0 (GUID: guid)" in caplog.text
    assert "Failed to get statistics" in caplog.text


@patch("erdma_exporter.eadm.get_device_stats", return_value={"listen_create_cnt": 2})
@patch("erdma_exporter.ibv_devices.get_devices", return_value=[Device("erdma_0", "guid")])
@patch("erdma_exporter.eadm.get_version", return_value="0.2.38")
def test_log_startup_info_summarises_counters(mock_version, mock_devices, mock_stats, caplog):
    caplog.set_level("INFO")
    log_startup_info()
    assert "ERDMA Driver Version: 0.2.38" in caplog.text
    assert "Listen: listen_create=2, listen_success=0" in caplog.text
