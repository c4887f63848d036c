from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class LinkKind(str, Enum):
    WIRED = "WIRED"
    WIRELESS = "WIRELESS"

    @property
    def telemetry_label(self) -> str:
        return "ETH" if self is LinkKind.WIRED else "WiFi"


class LinkStatus(str, Enum):
    DOWN = "DOWN"
    CONNECTING = "CONNECTING"
    UP = "UP"


@dataclass
class NetworkLink:
    kind: LinkKind
    status: LinkStatus = LinkStatus.DOWN
    last_change_time: float = 0.0

    @property
    def is_up(self) -> bool:
        return self.status == LinkStatus.UP

    def set_status(self, status: LinkStatus, now: float) -> bool:
        if status == self.status:
            return False
        self.status = status
        self.last_change_time = now
        return True


@dataclass
class BrokerSession:
    transport_kind: Optional[LinkKind] = None
    connected: bool = False
    last_activity_time: Optional[float] = None
    subscribed_topics: List[str] = field(default_factory=list)
    will_topic: Optional[str] = None
    will_payload: Optional[str] = None
