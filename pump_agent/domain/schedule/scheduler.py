"""Run-window gating: simple weekly window or Eskom Ruraflex tariff bands."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from pump_agent.domain.models.schedule_config import ScheduleConfig

MinuteRange = Tuple[int, int]

HIGH_DEMAND_MONTHS = (6, 7, 8)


class TariffBand(str, Enum):
    PEAK = "PEAK"
    STANDARD = "STANDARD"
    OFF_PEAK = "OFF_PEAK"


class Season(str, Enum):
    HIGH_DEMAND = "HIGH_DEMAND"
    LOW_DEMAND = "LOW_DEMAND"


class DayType(str, Enum):
    WEEKDAY = "WEEKDAY"
    WEEKEND = "WEEKEND"


# Minute-of-day [start, end) ranges per (season, day type). Anything not listed is off-peak.
RURAFLEX_BANDS: Dict[Tuple[Season, DayType], Dict[TariffBand, Tuple[MinuteRange, ...]]] = {
    (Season.HIGH_DEMAND, DayType.WEEKDAY): {
        TariffBand.PEAK: ((360, 480), (1020, 1200)),
        TariffBand.STANDARD: ((480, 1020), (1200, 1320)),
    },
    (Season.LOW_DEMAND, DayType.WEEKDAY): {
        TariffBand.PEAK: ((420, 540), (1020, 1200)),
        TariffBand.STANDARD: ((360, 420), (540, 1020), (1200, 1320)),
    },
    (Season.HIGH_DEMAND, DayType.WEEKEND): {
        TariffBand.PEAK: (),
        TariffBand.STANDARD: ((420, 720), (1080, 1200)),
    },
    (Season.LOW_DEMAND, DayType.WEEKEND): {
        TariffBand.PEAK: (),
        TariffBand.STANDARD: ((420, 720), (1080, 1200)),
    },
}


def minute_of_day(now: datetime) -> int:
    return now.hour * 60 + now.minute


def sunday_based_weekday(now: datetime) -> int:
    # datetime.weekday() is Monday=0; the stored mask uses Sunday=0.
    return (now.weekday() + 1) % 7


def season_for(now: datetime) -> Season:
    if now.month in HIGH_DEMAND_MONTHS:
        return Season.HIGH_DEMAND
    return Season.LOW_DEMAND


def day_type_for(now: datetime) -> DayType:
    if now.weekday() < 5:
        return DayType.WEEKDAY
    return DayType.WEEKEND


def tariff_band(now: datetime) -> TariffBand:
    bands = RURAFLEX_BANDS[(season_for(now), day_type_for(now))]
    minutes = minute_of_day(now)

    for band in (TariffBand.PEAK, TariffBand.STANDARD):
        for start, end in bands[band]:
            if start <= minutes < end:
                return band

    return TariffBand.OFF_PEAK


def within_weekly_window(now: datetime, config: ScheduleConfig) -> bool:
    if not config.days & (1 << sunday_based_weekday(now)):
        return False

    minutes = minute_of_day(now)
    start = config.start_minutes
    end = config.end_minutes

    if start <= end:
        return start <= minutes < end
    # Window wraps past midnight.
    return minutes >= start or minutes < end


class TimeOfUseScheduler:

    def __init__(self, config: ScheduleConfig):
        self.config = config

    def update_config(self, config: ScheduleConfig) -> None:
        self.config = config

    def allowed(self, now: Optional[datetime]) -> bool:
        config = self.config

        if not config.gating_active:
            return True

        # No wall clock: fail open rather than block the pump.
        if now is None:
            return True

        if config.tou_enabled:
            return tariff_band(now) == TariffBand.OFF_PEAK

        return within_weekly_window(now, config)
