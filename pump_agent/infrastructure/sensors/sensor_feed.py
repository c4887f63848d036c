import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from pump_agent.domain.sensors.readings import PhaseReadings, SensorSnapshot

logger = logging.getLogger(__name__)

VOLTAGE_RANGE = (0.0, 500.0)
CURRENT_RANGE = (-0.5, 500.0)

PHASE_KEYS = ("Va", "Vb", "Vc", "Ia", "Ib", "Ic")


class SensorReadError(RuntimeError):
    """The meter did not answer or answered with an unusable frame."""


class SensorSource(Protocol):
    def read(self) -> PhaseReadings: ...


class JsonFileSensorSource:
    """Reads the latest meter frame published by the bus poller as JSON.

    Expected shape: ``{"Va": 230.1, "Vb": ..., "Ia": 12.3, ...}``.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> PhaseReadings:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise SensorReadError(f"meter frame unavailable: {exc}") from exc

        try:
            values = [float(raw[key]) for key in PHASE_KEYS]
        except (KeyError, TypeError, ValueError) as exc:
            raise SensorReadError(f"meter frame malformed: {exc}") from exc

        return PhaseReadings(*values)


def _in_range(value: float, bounds) -> bool:
    low, high = bounds
    return low <= value <= high


class SensorFeed:
    """Validates raw meter frames and keeps last-known-good values.

    A failed read or an out-of-range current counts as a failure; the
    counter is cleared by the next good frame. Out-of-range voltages are
    dropped without counting, keeping the previous voltages.
    """

    def __init__(self, source: SensorSource, *, max_failures: int = 5):
        self._source = source
        self.max_failures = max_failures
        self.readings = PhaseReadings()
        self.online = True
        self.consecutive_failures = 0

    def snapshot(self) -> SensorSnapshot:
        return SensorSnapshot(
            readings=self.readings,
            online=self.online,
            consecutive_failures=self.consecutive_failures,
        )

    def sample(self) -> SensorSnapshot:
        try:
            frame = self._source.read()
        except SensorReadError as exc:
            logger.debug("Sensor read failed: %s", exc)
            self._record_failure()
            return self.snapshot()

        if not self.online:
            logger.info("Sensor online")
        self.online = True

        voltages = self.readings.voltages
        if all(_in_range(v, VOLTAGE_RANGE) for v in frame.voltages):
            voltages = frame.voltages

        if not all(_in_range(i, CURRENT_RANGE) for i in frame.currents):
            logger.warning(
                "Invalid current reading: Ia=%.2f Ib=%.2f Ic=%.2f",
                frame.ia,
                frame.ib,
                frame.ic,
            )
            self.readings = PhaseReadings(*voltages, *self.readings.currents)
            self._record_failure()
            return self.snapshot()

        self.consecutive_failures = 0
        self.readings = PhaseReadings(*voltages, *frame.currents)
        return self.snapshot()

    def _record_failure(self) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_failures and self.online:
            logger.error("Sensor offline after %s consecutive failures", self.consecutive_failures)
            self.online = False
