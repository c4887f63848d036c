import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from pump_agent.application.control_service import ControlService
from pump_agent.core.clock import Clock
from pump_agent.core.connectivity import ConnectivityManager
from pump_agent.core.device_context import DeviceContext
from pump_agent.domain.actuator.actuator import Actuator
from pump_agent.domain.actuator.enums import ActuatorState, ControlMode
from pump_agent.domain.firmware.update_job import FirmwareUpdateJob, UpdateStatus
from pump_agent.infrastructure.io.panel_inputs import PanelInputs

logger = logging.getLogger(__name__)

TIME_FORMAT = "%H:%M:%S"


def format_time(now: Optional[datetime]) -> Optional[str]:
    if now is None:
        return None
    return now.strftime(TIME_FORMAT)


class TelemetryService:

    def __init__(
        self,
        context: DeviceContext,
        connectivity: ConnectivityManager,
        control: ControlService,
        panel: PanelInputs,
        clock: Clock,
        *,
        mode: Callable[[], ControlMode],
        firmware_job: Callable[[], FirmwareUpdateJob],
    ):
        self._context = context
        self._connectivity = connectivity
        self._control = control
        self._panel = panel
        self._clock = clock
        self._mode = mode
        self._firmware_job = firmware_job

    @property
    def multi_pump(self) -> bool:
        return len(self._control.actuators) > 1

    def _base_payload(self) -> Dict[str, Any]:
        return {
            "sensor": self._control.last_snapshot.online,
            "uptime": self._context.uptime_s(self._clock.monotonic()),
            "mode": self._mode().value,
            "network": self._connectivity.network_label,
            "di": self._panel.last_raw,
            "do": self._control.outputs.value,
            "hardware_type": self._context.hardware_type,
            "firmware_name": self._context.firmware_name,
            "firmware_version": self._context.firmware_version,
        }

    def _single_pump_fields(self, actuator: Actuator) -> Dict[str, Any]:
        readings = self._control.last_snapshot.readings
        payload: Dict[str, Any] = {
            "Va": round(readings.va, 1),
            "Vb": round(readings.vb, 1),
            "Vc": round(readings.vc, 1),
            "Ia": round(readings.ia, 2),
            "Ib": round(readings.ib, 2),
            "Ic": round(readings.ic, 2),
            "state": actuator.state.value,
            "cmd": actuator.start_command,
            "contactor_confirmed": actuator.contactor_confirmed,
        }
        if actuator.state == ActuatorState.FAULT:
            payload["fault"] = actuator.fault_kind.value
        return payload

    def _multi_pump_fields(self) -> Dict[str, Any]:
        readings = self._control.last_snapshot.readings
        payload: Dict[str, Any] = {}
        for actuator in self._control.actuators:
            n = actuator.actuator_id
            phase = actuator.phases[0]
            payload[f"V{n}"] = round(readings.voltages[phase], 1)
            payload[f"I{n}"] = round(readings.currents[phase], 2)
            payload[f"s{n}"] = actuator.state.value
            payload[f"c{n}"] = actuator.start_command
            payload[f"f{n}"] = actuator.fault_kind.value
            payload[f"cf{n}"] = actuator.contactor_confirmed
        return payload

    def build_payload(self) -> Dict[str, Any]:
        if self.multi_pump:
            payload = self._multi_pump_fields()
        else:
            payload = self._single_pump_fields(self._control.actuators[0])

        payload.update(self._base_payload())

        job = self._firmware_job()
        if job.status != UpdateStatus.IDLE:
            payload["ota"] = {
                "status": job.status.value,
                "progress": job.progress_percent,
                **({"error": job.error} if job.error else {}),
            }

        time_str = format_time(self._clock.wall_time())
        if time_str is not None:
            payload["time"] = time_str

        return payload

    def publish(self) -> bool:
        if not self._connectivity.is_connected:
            return False

        payload = self.build_payload()
        published = self._connectivity.publish(self._context.topics.telemetry, json.dumps(payload))
        if published:
            logger.debug("Telemetry published: %s", payload)
        return published

    def settings_payload(self) -> Dict[str, Any]:
        schedule = self._control.scheduler.config
        payload: Dict[str, Any] = {"type": "settings"}

        if self.multi_pump:
            for actuator in self._control.actuators:
                payload[f"p{actuator.actuator_id}"] = actuator.protection.model_dump()
        else:
            protection = self._control.actuators[0].protection
            payload.update(
                {
                    "overcurrent_protection": protection.overcurrent_enabled,
                    "dryrun_protection": protection.dryrun_enabled,
                    "max_current": protection.max_current,
                    "dry_current": protection.dry_current,
                    "overcurrent_delay_s": protection.overcurrent_delay_s,
                    "dryrun_delay_s": protection.dryrun_delay_s,
                }
            )

        payload.update(
            {
                "schedule_enabled": schedule.enabled,
                "schedule_start_hour": schedule.start_hour,
                "schedule_start_minute": schedule.start_minute,
                "schedule_end_hour": schedule.end_hour,
                "schedule_end_minute": schedule.end_minute,
                "schedule_days": schedule.days,
                "ruraflex_enabled": schedule.tou_enabled,
            }
        )

        time_str = format_time(self._clock.wall_time())
        if time_str is not None:
            payload["current_time"] = time_str

        return payload
