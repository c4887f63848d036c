"""
Tests for device identity (pump_agent/core/device_context.py).
"""
import pytest

from pump_agent.core.config import Settings
from pump_agent.core.device_context import DeviceContext, device_id_from_mac, read_interface_mac


@pytest.mark.parametrize(
    "mac, device_id",
    [
        ("aa:bb:cc:dd:ee:ff", "FL-DDEEFF"),
        ("00-11-22-0a-0b-0c", "FL-0A0B0C"),
    ],
)
def test_device_id_uses_last_three_octets(mac, device_id):
    assert device_id_from_mac(mac) == device_id


def test_invalid_mac_is_rejected():
    with pytest.raises(ValueError):
        device_id_from_mac("aa:bb:cc")


def test_read_interface_mac(tmp_path):
    (tmp_path / "wlan0").mkdir()
    (tmp_path / "wlan0" / "address").write_text("de:ad:be:ef:00:01\n", encoding="utf-8")
    (tmp_path / "eth0").mkdir()
    (tmp_path / "eth0" / "address").write_text("00:00:00:00:00:00\n", encoding="utf-8")

    assert read_interface_mac("wlan0", tmp_path) == "de:ad:be:ef:00:01"
    assert read_interface_mac("eth0", tmp_path) is None
    assert read_interface_mac("usb0", tmp_path) is None


def test_configured_device_id_wins():
    context = DeviceContext.create(Settings(DEVICE_ID="FL-123456", TOPIC_PREFIX="fieldlink"), boot_time=50.0)

    assert context.device_id == "FL-123456"
    assert context.topics.command == "fieldlink/FL-123456/command"
    assert context.uptime_s(125.5) == 75
