from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

from pump_agent.domain.actuator.enums import CommandSource, FaultKind
from pump_agent.domain.models.protection_config import ProtectionConfig
from pump_agent.domain.models.schedule_config import ScheduleConfig

if TYPE_CHECKING:
    from pump_agent.domain.actuator.actuator import Actuator


class FaultObserver(Protocol):
    def on_fault(self, actuator: "Actuator", kind: FaultKind) -> None: ...

    def on_fault_cleared(self, actuator: "Actuator") -> None: ...


class CommandSink(Protocol):
    """Everything the command dispatcher is allowed to touch.

    ``pump`` is the 1-based unit index; ``None`` addresses every unit.
    """

    @property
    def pump_count(self) -> int: ...

    def start(self, pump: Optional[int], source: CommandSource) -> bool: ...

    def stop(self, pump: Optional[int], source: CommandSource) -> bool: ...

    def reset(self, pump: Optional[int], source: CommandSource) -> bool: ...

    def request_status(self) -> None: ...

    def get_protection(self, pump: int) -> ProtectionConfig: ...

    def apply_protection(self, pump: int, config: ProtectionConfig) -> None: ...

    def get_schedule(self) -> ScheduleConfig: ...

    def apply_schedule(self, config: ScheduleConfig) -> None: ...

    def settings_snapshot(self) -> Dict[str, Any]: ...

    def publish_response(self, payload: Dict[str, Any]) -> bool: ...

    def prepare_firmware_update(self) -> None: ...

    def run_firmware_update(self, url: str) -> bool: ...
