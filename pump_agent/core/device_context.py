import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pump_agent.core.config import Settings
from pump_agent.core.mqtt_topics import DeviceTopics, MqttTopics

logger = logging.getLogger(__name__)

DEVICE_ID_PREFIX = "FL-"


def device_id_from_mac(mac: str) -> str:
    """``aa:bb:cc:dd:ee:ff`` -> ``FL-DDEEFF`` (last three octets)."""
    octets = [part for part in mac.replace("-", ":").split(":") if part]
    if len(octets) != 6:
        raise ValueError(f"Invalid MAC address: {mac!r}")
    return DEVICE_ID_PREFIX + "".join(f"{int(octet, 16):02X}" for octet in octets[3:])


def read_interface_mac(interface: str, sysfs_root: Path = Path("/sys/class/net")) -> Optional[str]:
    try:
        mac = (sysfs_root / interface / "address").read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not mac or mac == "00:00:00:00:00:00":
        return None
    return mac


def _fallback_mac() -> str:
    node = uuid.getnode()
    return ":".join(f"{(node >> shift) & 0xFF:02x}" for shift in range(40, -1, -8))


@dataclass(frozen=True)
class DeviceContext:
    """Identity shared by every component; built once by the entry point."""

    device_id: str
    topics: DeviceTopics
    firmware_name: str
    firmware_version: str
    hardware_type: str
    boot_time: float

    def uptime_s(self, now: float) -> int:
        return int(now - self.boot_time)

    @classmethod
    def create(cls, settings: Settings, boot_time: float) -> "DeviceContext":
        device_id = settings.DEVICE_ID
        if not device_id:
            mac = read_interface_mac(settings.WIRELESS_INTERFACE) or read_interface_mac(settings.WIRED_INTERFACE)
            device_id = device_id_from_mac(mac or _fallback_mac())

        logger.info("Device ID: %s", device_id)

        return cls(
            device_id=device_id,
            topics=MqttTopics.for_device(device_id),
            firmware_name=settings.FIRMWARE_NAME,
            firmware_version=settings.FIRMWARE_VERSION,
            hardware_type=settings.HARDWARE_TYPE,
            boot_time=boot_time,
        )
