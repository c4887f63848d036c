import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from pump_agent.domain.actuator.enums import ActuatorState, FaultKind
from pump_agent.domain.interfaces import FaultObserver
from pump_agent.domain.models.protection_config import ProtectionConfig
from pump_agent.domain.sensors.readings import PhaseReadings, SensorSnapshot

logger = logging.getLogger(__name__)


@dataclass
class ControlParameters:
    tick_interval_s: float = 0.5
    run_threshold: float = 5.0
    hysteresis: float = 1.0
    debounce_count: int = 3
    start_timeout_s: float = 10.0
    fault_auto_reset_s: float = 0.0
    sensor_max_failures: int = 5


@dataclass
class PendingTransition:
    candidate_state: ActuatorState = ActuatorState.STOPPED
    debounce_count: int = 0


@dataclass
class FaultRecord:
    kind: FaultKind
    timestamp: float
    currents: Tuple[float, ...] = field(default_factory=tuple)


class Actuator:
    """Run/stop/fault state machine for one pump contactor.

    ``phases`` selects which of the three phase currents this unit watches:
    a single pump on a three-phase motor watches all of them, while each pump
    of a three-pump layout watches its own line.
    """

    def __init__(
        self,
        actuator_id: int,
        protection: ProtectionConfig,
        parameters: ControlParameters,
        *,
        phases: Sequence[int] = (0, 1, 2),
        fault_observer: Optional[FaultObserver] = None,
    ):
        self.actuator_id = actuator_id
        self.protection = protection
        self.parameters = parameters
        self.phases = tuple(phases)
        self.fault_observer = fault_observer

        self.state = ActuatorState.STOPPED
        self.fault_kind = FaultKind.NONE
        self.pending = PendingTransition()
        self.start_command = False
        self.output_on = False
        self.contactor_confirmed = False
        self.last_fault: Optional[FaultRecord] = None

        self._start_armed_at: Optional[float] = None
        self._overcurrent_since: Optional[float] = None
        self._dryrun_since: Optional[float] = None
        self._last_currents: Tuple[float, ...] = tuple(0.0 for _ in self.phases)
        # FaultKind.NONE marks a cleared fault.
        self._pending_notices: List[FaultKind] = []

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def request_start(self) -> bool:
        if self.state == ActuatorState.FAULT:
            logger.warning(
                "Pump %s: cannot START while in FAULT (%s). Send RESET first.",
                self.actuator_id,
                self.fault_kind.value,
            )
            return False

        self.start_command = True
        logger.info("Pump %s: start command accepted", self.actuator_id)
        return True

    def request_stop(self) -> None:
        self.start_command = False
        if self.state != ActuatorState.FAULT:
            self.state = ActuatorState.STOPPED
            self.pending = PendingTransition(ActuatorState.STOPPED, 0)
        logger.info("Pump %s: stop command accepted", self.actuator_id)

    def reset_fault(self) -> bool:
        if self.state != ActuatorState.FAULT:
            logger.info("Pump %s: no fault to reset", self.actuator_id)
            return False

        logger.info(
            "Pump %s: clearing fault %s",
            self.actuator_id,
            self.fault_kind.value,
        )
        self.state = ActuatorState.STOPPED
        self.fault_kind = FaultKind.NONE
        self.pending = PendingTransition(ActuatorState.STOPPED, 0)
        self.start_command = False
        self._overcurrent_since = None
        self._dryrun_since = None
        self._start_armed_at = None

        if self.fault_observer is not None:
            self._pending_notices.append(FaultKind.NONE)

        return True

    def update_protection(self, protection: ProtectionConfig) -> None:
        self.protection = protection

    # ------------------------------------------------------------------
    # Control tick
    # ------------------------------------------------------------------
    def monitored_currents(self, readings: PhaseReadings) -> Tuple[float, ...]:
        currents = readings.currents
        return tuple(currents[index] for index in self.phases)

    def tick(self, now: float, snapshot: SensorSnapshot) -> ActuatorState:
        if self.state == ActuatorState.FAULT:
            self._maybe_auto_reset(now)
            return self.state

        currents = self.monitored_currents(snapshot.readings)
        self._last_currents = currents

        if snapshot.consecutive_failures >= self.parameters.sensor_max_failures:
            self.trigger_fault(FaultKind.SENSOR_OFFLINE, now)
            return self.state

        fault = self._evaluate_protection(now, currents)
        if fault is not None:
            self.trigger_fault(fault, now)
            return self.state

        self._apply_debounce(self._hysteresis_target(max(currents)))
        return self.state

    def trigger_fault(self, kind: FaultKind, now: float) -> None:
        if self.state == ActuatorState.FAULT:
            return

        self.state = ActuatorState.FAULT
        self.fault_kind = kind
        self.start_command = False
        self.output_on = False
        self._start_armed_at = None
        self.pending = PendingTransition(ActuatorState.FAULT, 0)
        self.last_fault = FaultRecord(kind=kind, timestamp=now, currents=self._last_currents)

        logger.error(
            "!!! PUMP %s FAULT: %s (currents=%s) !!!",
            self.actuator_id,
            kind.value,
            ", ".join(f"{value:.2f}" for value in self._last_currents),
        )

        if self.fault_observer is not None:
            self._pending_notices.append(kind)

    def notify_observer(self) -> None:
        """Deliver fault transitions recorded since the last call.

        Observers may block on the network, so the control service calls this
        only after the output register has been written.
        """
        notices, self._pending_notices = self._pending_notices, []
        if self.fault_observer is None:
            return

        for kind in notices:
            if kind == FaultKind.NONE:
                self.fault_observer.on_fault_cleared(self)
            else:
                self.fault_observer.on_fault(self, kind)

    def desired_output(self, schedule_allows: bool) -> bool:
        return (
            self.start_command
            and self.state != ActuatorState.FAULT
            and schedule_allows
        )

    def commit_output(self, schedule_allows: bool, now: float) -> bool:
        """Record the output value about to be written for this tick.

        The start-failure timer only runs while the contactor is energised, so a
        start command held back by the schedule does not count toward it.
        """
        desired = self.desired_output(schedule_allows)

        if desired and not self.output_on:
            self._start_armed_at = now
        elif not desired:
            self._start_armed_at = None

        if desired != self.output_on:
            logger.info(
                "Pump %s contactor: %s",
                self.actuator_id,
                "ON" if desired else "OFF",
            )

        self.output_on = desired
        return desired

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _maybe_auto_reset(self, now: float) -> None:
        auto_reset_s = self.parameters.fault_auto_reset_s
        if auto_reset_s <= 0 or self.last_fault is None:
            return
        if now - self.last_fault.timestamp >= auto_reset_s:
            logger.info("Pump %s: auto-resetting fault after timeout", self.actuator_id)
            self.reset_fault()

    def _condition_since(self, since: Optional[float], now: float) -> float:
        # A condition first seen on this tick is credited with one tick interval.
        if since is None:
            return now - self.parameters.tick_interval_s
        return since

    def _evaluate_protection(self, now: float, currents: Tuple[float, ...]) -> Optional[FaultKind]:
        protection = self.protection
        max_current = max(currents)

        if protection.overcurrent_enabled and any(c > protection.max_current for c in currents):
            if self._overcurrent_since is None:
                logger.warning(
                    "Pump %s: overcurrent condition started (delay=%ss)",
                    self.actuator_id,
                    protection.overcurrent_delay_s,
                )
            self._overcurrent_since = self._condition_since(self._overcurrent_since, now)
            if (
                protection.overcurrent_delay_s == 0
                or now - self._overcurrent_since >= protection.overcurrent_delay_s
            ):
                return FaultKind.OVERCURRENT
        elif self._overcurrent_since is not None:
            logger.info("Pump %s: overcurrent condition cleared", self.actuator_id)
            self._overcurrent_since = None

        if (
            protection.dryrun_enabled
            and protection.dry_current > 0
            and self.start_command
            and self.state == ActuatorState.RUNNING
        ):
            if max_current < protection.dry_current:
                if self._dryrun_since is None:
                    logger.warning(
                        "Pump %s: dry run condition started (delay=%ss)",
                        self.actuator_id,
                        protection.dryrun_delay_s,
                    )
                self._dryrun_since = self._condition_since(self._dryrun_since, now)
                if (
                    protection.dryrun_delay_s == 0
                    or now - self._dryrun_since >= protection.dryrun_delay_s
                ):
                    return FaultKind.DRY_RUN
            elif self._dryrun_since is not None:
                logger.info("Pump %s: dry run condition cleared", self.actuator_id)
                self._dryrun_since = None
        else:
            self._dryrun_since = None

        start_timeout_s = self.parameters.start_timeout_s
        if (
            start_timeout_s > 0
            and self._start_armed_at is not None
            and self.start_command
            and self.state != ActuatorState.RUNNING
            and now - self._start_armed_at > start_timeout_s
        ):
            logger.warning("Pump %s: start failure timeout, pump did not start", self.actuator_id)
            return FaultKind.START_TIMEOUT

        return None

    def _hysteresis_target(self, max_current: float) -> ActuatorState:
        run_threshold = self.parameters.run_threshold

        if self.state == ActuatorState.RUNNING:
            if max_current < run_threshold - self.parameters.hysteresis:
                return ActuatorState.STOPPED
            return ActuatorState.RUNNING

        if max_current > run_threshold:
            return ActuatorState.RUNNING
        return ActuatorState.STOPPED

    def _apply_debounce(self, target: ActuatorState) -> None:
        if target == self.state:
            self.pending = PendingTransition(self.state, 0)
            return

        if target == self.pending.candidate_state:
            self.pending.debounce_count += 1
        else:
            self.pending = PendingTransition(target, 1)

        if self.pending.debounce_count >= self.parameters.debounce_count:
            self.state = target
            self.pending = PendingTransition(target, 0)
            logger.info("Pump %s: state changed to %s", self.actuator_id, target.value)
