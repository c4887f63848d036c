import fcntl
import logging
import socket
import struct
import time
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

from pump_agent.domain.network.network_link import LinkKind

logger = logging.getLogger(__name__)

SIOCGIFADDR = 0x8915
SYSFS_NET = Path("/sys/class/net")


class LeaseEvent(str, Enum):
    NOTHING = "NOTHING"
    RENEW_FAILED = "RENEW_FAILED"
    RENEWED = "RENEWED"
    REBIND_FAILED = "REBIND_FAILED"
    REBOUND = "REBOUND"


class TransportProvider(Protocol):
    kind: LinkKind

    def connect(self, timeout_s: float) -> bool: ...

    def begin_connect(self) -> None: ...

    def poll_connect(self) -> bool: ...

    def link_up(self) -> bool: ...

    def maintain_lease(self) -> LeaseEvent: ...

    def teardown(self) -> None: ...

    def bind_address(self) -> Optional[str]: ...


class InterfaceTransport:
    """Linux network interface observed through sysfs.

    Address assignment (DHCP, Wi-Fi association) is owned by the OS network
    stack; this provider only waits for it and reports what it sees.
    """

    def __init__(self, kind: LinkKind, interface: str, *, sysfs_root: Path = SYSFS_NET):
        self.kind = kind
        self.interface = interface
        self._sysfs = sysfs_root / interface
        self._had_address = False

    def _read_attr(self, name: str) -> Optional[str]:
        try:
            return (self._sysfs / name).read_text(encoding="utf-8").strip()
        except OSError:
            return None

    def _carrier(self) -> bool:
        operstate = self._read_attr("operstate")
        if operstate is None:
            return False
        # Wireless drivers commonly report "dormant" until associated.
        return operstate == "up" or (operstate == "unknown" and self._read_attr("carrier") == "1")

    def bind_address(self) -> Optional[str]:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            packed = struct.pack("256s", self.interface[:15].encode("utf-8"))
            result = fcntl.ioctl(sock.fileno(), SIOCGIFADDR, packed)
            return socket.inet_ntoa(result[20:24])
        except OSError:
            return None
        finally:
            sock.close()

    def link_up(self) -> bool:
        return self._carrier() and self.bind_address() is not None

    def begin_connect(self) -> None:
        logger.info("Waiting for %s link on %s", self.kind.value, self.interface)

    def poll_connect(self) -> bool:
        if not self.link_up():
            return False

        if not self._had_address:
            self._had_address = True
            logger.info(
                "%s link up on %s, IP: %s",
                self.kind.value,
                self.interface,
                self.bind_address(),
            )
        return True

    def connect(self, timeout_s: float) -> bool:
        """Blocking bring-up, only used while selecting the boot transport."""
        self.begin_connect()
        deadline = time.monotonic() + timeout_s

        while True:
            if self.poll_connect():
                return True
            if time.monotonic() >= deadline:
                break
            time.sleep(0.5)

        logger.warning("%s link on %s not available", self.kind.value, self.interface)
        return False

    def maintain_lease(self) -> LeaseEvent:
        has_address = self.bind_address() is not None

        if self._had_address and not has_address:
            self._had_address = False
            logger.warning("%s lease lost on %s", self.kind.value, self.interface)
            return LeaseEvent.RENEW_FAILED

        if not self._had_address and has_address:
            self._had_address = True
            logger.info("%s lease rebound on %s", self.kind.value, self.interface)
            return LeaseEvent.REBOUND

        return LeaseEvent.NOTHING

    def teardown(self) -> None:
        self._had_address = False
        logger.info("%s transport on %s released", self.kind.value, self.interface)
