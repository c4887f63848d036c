from pydantic import BaseModel, field_validator, model_validator

ALL_DAYS = 0x7F


class ScheduleConfig(BaseModel):
    """Weekly run window plus the tariff (TOU) switch.

    ``days`` is a weekday mask with bit 0 = Sunday ... bit 6 = Saturday.
    """

    enabled: bool = False
    start_hour: int = 6
    start_minute: int = 0
    end_hour: int = 18
    end_minute: int = 0
    days: int = ALL_DAYS
    tou_enabled: bool = False

    @field_validator("start_hour", "end_hour")
    @classmethod
    def validate_hour(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError("hour must be within 0-23")
        return value

    @field_validator("start_minute", "end_minute")
    @classmethod
    def validate_minute(cls, value: int) -> int:
        if not 0 <= value <= 59:
            raise ValueError("minute must be within 0-59")
        return value

    @field_validator("days")
    @classmethod
    def validate_days(cls, value: int) -> int:
        if not 0 <= value <= ALL_DAYS:
            raise ValueError("days mask must be within 0-127")
        return value

    @model_validator(mode="after")
    def tariff_mode_wins(self):
        # Tariff mode wins when both flags are set.
        if self.tou_enabled and self.enabled:
            self.enabled = False
        return self

    @property
    def start_minutes(self) -> int:
        return self.start_hour * 60 + self.start_minute

    @property
    def end_minutes(self) -> int:
        return self.end_hour * 60 + self.end_minute

    @property
    def gating_active(self) -> bool:
        return self.enabled or self.tou_enabled
