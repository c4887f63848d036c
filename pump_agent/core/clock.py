import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

# Anything earlier means the wall clock has not been synchronised yet.
MIN_VALID_YEAR = 2020


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def wall_time(self) -> Optional[datetime]: ...


class SystemClock:

    def __init__(self, utc_offset_hours: float = 0.0):
        self._tz = timezone(timedelta(hours=utc_offset_hours))

    def monotonic(self) -> float:
        return time.monotonic()

    def wall_time(self) -> Optional[datetime]:
        now = datetime.now(self._tz)
        if now.year < MIN_VALID_YEAR:
            return None
        return now
