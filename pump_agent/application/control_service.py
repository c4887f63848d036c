import logging
from typing import List, Optional, Sequence

from pump_agent.core.clock import Clock
from pump_agent.domain.actuator.actuator import Actuator
from pump_agent.domain.actuator.enums import ActuatorState
from pump_agent.domain.schedule.scheduler import TimeOfUseScheduler
from pump_agent.domain.sensors.readings import SensorSnapshot
from pump_agent.infrastructure.io.output_register import OutputRegister
from pump_agent.infrastructure.sensors.sensor_feed import SensorFeed

logger = logging.getLogger(__name__)


class ControlService:
    """One control tick across every pump.

    Order within a tick is fixed: sensor sample, per-pump fault and state
    evaluation, schedule evaluation, then one write of the output register.
    """

    def __init__(
        self,
        actuators: Sequence[Actuator],
        scheduler: TimeOfUseScheduler,
        sensor_feed: SensorFeed,
        outputs: OutputRegister,
        clock: Clock,
    ):
        self.actuators: List[Actuator] = list(actuators)
        self.scheduler = scheduler
        self.sensor_feed = sensor_feed
        self.outputs = outputs
        self._clock = clock

        self.schedule_allows = True
        self.last_snapshot: SensorSnapshot = sensor_feed.snapshot()
        self._was_within_schedule = False

    def initialize(self) -> None:
        self.schedule_allows = self.scheduler.allowed(self._clock.wall_time())
        self._was_within_schedule = self.schedule_allows
        logger.info(
            "Schedule init: currently %s schedule window",
            "within" if self.schedule_allows else "outside",
        )

        if self.scheduler.config.gating_active and self.schedule_allows:
            logger.info("Schedule: Boot within allowed hours, starting pumps")
            for actuator in self.actuators:
                actuator.request_start()

        self.outputs.all_off()

    def tick(self) -> bool:
        now = self._clock.monotonic()

        snapshot = self.sensor_feed.sample()
        self.last_snapshot = snapshot

        for actuator in self.actuators:
            actuator.tick(now, snapshot)

        self.schedule_allows = self._evaluate_schedule()
        self.commit_outputs(now)
        return self.schedule_allows

    def _evaluate_schedule(self) -> bool:
        allowed = self.scheduler.allowed(self._clock.wall_time())

        if not self.scheduler.config.gating_active:
            return allowed

        if allowed and not self._was_within_schedule:
            logger.info("Schedule: Entering allowed hours, starting pumps")
            for actuator in self.actuators:
                if actuator.state != ActuatorState.FAULT:
                    actuator.request_start()

        if not allowed and self._was_within_schedule:
            logger.info("Schedule: Outside allowed hours, stopping pumps")
            for actuator in self.actuators:
                actuator.start_command = False

        self._was_within_schedule = allowed
        return allowed

    def commit_outputs(self, now: Optional[float] = None) -> int:
        if now is None:
            now = self._clock.monotonic()

        contactors = [actuator.commit_output(self.schedule_allows, now) for actuator in self.actuators]
        alarms = [actuator.state == ActuatorState.FAULT for actuator in self.actuators]
        value = self.outputs.commit(contactors, alarms)

        for actuator in self.actuators:
            actuator.notify_observer()
        return value

    def apply_feedback(self, feedback: Sequence[bool]) -> None:
        for index, (actuator, closed) in enumerate(zip(self.actuators, feedback)):
            actuator.contactor_confirmed = self.outputs.contactor_on(index) and closed

    def stop_all(self) -> None:
        for actuator in self.actuators:
            actuator.request_stop()
        self.commit_outputs()
