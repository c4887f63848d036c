from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class PhaseReadings:
    va: float = 0.0
    vb: float = 0.0
    vc: float = 0.0
    ia: float = 0.0
    ib: float = 0.0
    ic: float = 0.0

    @property
    def voltages(self) -> Tuple[float, float, float]:
        return (self.va, self.vb, self.vc)

    @property
    def currents(self) -> Tuple[float, float, float]:
        return (self.ia, self.ib, self.ic)


@dataclass(frozen=True)
class SensorSnapshot:
    """Last-known-good readings plus the health of the feed that produced them."""

    readings: PhaseReadings
    online: bool
    consecutive_failures: int
