from pydantic import BaseModel, field_validator

MAX_CURRENT_RANGE = (1.0, 500.0)
DRY_CURRENT_RANGE = (0.0, 50.0)
MAX_DELAY_S = 30


class ProtectionConfig(BaseModel):
    overcurrent_enabled: bool = True
    dryrun_enabled: bool = True
    max_current: float = 120.0
    dry_current: float = 0.5
    overcurrent_delay_s: int = 0
    dryrun_delay_s: int = 0

    @field_validator("max_current")
    @classmethod
    def validate_max_current(cls, value: float) -> float:
        low, high = MAX_CURRENT_RANGE
        if not low <= value <= high:
            raise ValueError(f"max_current must be within {low}-{high} A")
        return value

    @field_validator("dry_current")
    @classmethod
    def validate_dry_current(cls, value: float) -> float:
        low, high = DRY_CURRENT_RANGE
        if not low <= value <= high:
            raise ValueError(f"dry_current must be within {low}-{high} A")
        return value

    @field_validator("overcurrent_delay_s", "dryrun_delay_s")
    @classmethod
    def validate_delay(cls, value: int) -> int:
        if not 0 <= value <= MAX_DELAY_S:
            raise ValueError(f"delay must be within 0-{MAX_DELAY_S} s")
        return value
