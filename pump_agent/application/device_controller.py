import json
import logging
from typing import Any, Dict, List, Optional

from pump_agent.application.command_dispatcher import CommandDispatcher
from pump_agent.application.control_service import ControlService
from pump_agent.application.firmware_update_service import FirmwareUpdateService
from pump_agent.application.telemetry_service import TelemetryService
from pump_agent.core.clock import Clock
from pump_agent.core.connectivity import ConnectivityManager
from pump_agent.core.device_context import DeviceContext
from pump_agent.core.exceptions import FirmwareUpdateBusyError, RestartRequested
from pump_agent.core.mqtt_topics import StatusPayloads
from pump_agent.domain.actuator.actuator import Actuator, ControlParameters
from pump_agent.domain.actuator.enums import CommandSource, ControlMode
from pump_agent.domain.interfaces import FaultObserver
from pump_agent.domain.models.protection_config import ProtectionConfig
from pump_agent.domain.models.schedule_config import ScheduleConfig
from pump_agent.domain.schedule.scheduler import TimeOfUseScheduler
from pump_agent.infrastructure.config.settings_repository import SettingsRepository
from pump_agent.infrastructure.io.output_register import OutputRegister
from pump_agent.infrastructure.io.panel_inputs import PanelEvents, PanelInputs
from pump_agent.infrastructure.sensors.sensor_feed import SensorFeed
from pump_agent.interfaces.handlers.command_message_handler import CommandMessageHandler

logger = logging.getLogger(__name__)


def phases_for(pump_id: int, pump_count: int):
    """A single pump watches all three phases; in the three-pump layout pump N owns phase N."""
    if pump_count == 1:
        return (0, 1, 2)
    return (pump_id - 1,)


class DeviceController:
    """Composes the control loop and implements the dispatcher's command sink."""

    def __init__(
        self,
        *,
        context: DeviceContext,
        clock: Clock,
        connectivity: ConnectivityManager,
        repository: SettingsRepository,
        sensor_feed: SensorFeed,
        panel: PanelInputs,
        outputs: OutputRegister,
        firmware: FirmwareUpdateService,
        parameters: ControlParameters,
        pump_count: int = 1,
        telemetry_interval_s: float = 2.0,
        fault_observer: Optional[FaultObserver] = None,
    ):
        self.context = context
        self._clock = clock
        self.connectivity = connectivity
        self.repository = repository
        self.panel = panel
        self.firmware = firmware
        self.parameters = parameters
        self.telemetry_interval_s = telemetry_interval_s
        self.fault_observer = fault_observer

        self.mode = ControlMode.REMOTE
        self.actuators: List[Actuator] = [
            Actuator(
                pump_id,
                repository.load_protection(pump_id),
                parameters,
                phases=phases_for(pump_id, pump_count),
                fault_observer=fault_observer,
            )
            for pump_id in range(1, pump_count + 1)
        ]

        self.control = ControlService(
            self.actuators,
            TimeOfUseScheduler(repository.load_schedule()),
            sensor_feed,
            outputs,
            clock,
        )
        self.telemetry = TelemetryService(
            context,
            connectivity,
            self.control,
            panel,
            clock,
            mode=lambda: self.mode,
            firmware_job=lambda: self.firmware.job,
        )
        self.dispatcher = CommandDispatcher(self)
        self.commands = CommandMessageHandler(self.dispatcher)
        connectivity.set_message_handler(self.commands.on_broker_message)

        self._last_tick: Optional[float] = None
        self._last_telemetry: Optional[float] = None

    def boot(self) -> None:
        self.control.initialize()
        logger.info(
            "Pump controller setup complete (%s pump%s). Entering main loop...",
            len(self.actuators),
            "" if len(self.actuators) == 1 else "s",
        )

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    def loop_once(self) -> None:
        """Runs every due piece of periodic work once; never sleeps."""
        self.connectivity.maintain()
        self.commands.drain()

        now = self._clock.monotonic()
        self._apply_panel(self.panel.poll(now))

        if self._due(self._last_tick, self.parameters.tick_interval_s, now):
            self._last_tick = now
            self.control.tick()

        now = self._clock.monotonic()
        if self._due(self._last_telemetry, self.telemetry_interval_s, now):
            self._last_telemetry = now
            self.telemetry.publish()

    @staticmethod
    def _due(last: Optional[float], interval: float, now: float) -> bool:
        return last is None or now - last >= interval

    def _apply_panel(self, events: PanelEvents) -> None:
        if events.mode != self.mode:
            logger.info("Control mode: %s", events.mode.value)
            self.mode = events.mode

        self.control.apply_feedback(events.feedback)

        if events.start_pressed:
            self.start(None, CommandSource.BUTTON)
        if events.stop_pressed:
            self.stop(None, CommandSource.BUTTON)

    # ------------------------------------------------------------------
    # CommandSink
    # ------------------------------------------------------------------
    @property
    def pump_count(self) -> int:
        return len(self.actuators)

    def _targets(self, pump: Optional[int]) -> List[Actuator]:
        if pump is None:
            return list(self.actuators)
        if not 1 <= pump <= len(self.actuators):
            logger.warning("Pump %s does not exist", pump)
            return []
        return [self.actuators[pump - 1]]

    def start(self, pump: Optional[int], source: CommandSource) -> bool:
        if source == CommandSource.BROKER and self.mode == ControlMode.LOCAL:
            logger.info("START from broker ignored - in LOCAL mode")
            return False
        if source == CommandSource.BUTTON and self.mode == ControlMode.REMOTE:
            logger.info("Manual START ignored - in REMOTE mode")
            return False

        accepted = [actuator.request_start() for actuator in self._targets(pump)]
        return any(accepted)

    def stop(self, pump: Optional[int], source: CommandSource) -> bool:
        targets = self._targets(pump)
        for actuator in targets:
            actuator.request_stop()
        self.control.commit_outputs()
        return bool(targets)

    def reset(self, pump: Optional[int], source: CommandSource) -> bool:
        cleared = [actuator.reset_fault() for actuator in self._targets(pump)]
        self.control.commit_outputs()
        return any(cleared)

    def request_status(self) -> None:
        self._last_telemetry = None

    def get_protection(self, pump: int) -> ProtectionConfig:
        return self.actuators[pump - 1].protection

    def apply_protection(self, pump: int, config: ProtectionConfig) -> None:
        self.repository.save_protection(config, pump)
        self.actuators[pump - 1].update_protection(config)

    def get_schedule(self) -> ScheduleConfig:
        return self.control.scheduler.config

    def apply_schedule(self, config: ScheduleConfig) -> None:
        self.repository.save_schedule(config)
        self.control.scheduler.update_config(config)

    def settings_snapshot(self) -> Dict[str, Any]:
        return self.telemetry.settings_payload()

    def publish_response(self, payload: Dict[str, Any]) -> bool:
        return self.connectivity.publish(self.context.topics.telemetry, json.dumps(payload))

    def prepare_firmware_update(self) -> None:
        logger.warning("Stopping all pumps for firmware update")
        self.control.stop_all()
        self.publish_response({"status": StatusPayloads.UPDATING})

    def run_firmware_update(self, url: str) -> bool:
        try:
            ok = self.firmware.run(url)
        except FirmwareUpdateBusyError as exc:
            logger.warning("%s", exc)
            return False

        if ok:
            self.connectivity.disconnect()
            raise RestartRequested("firmware updated")

        self.request_status()
        return False
