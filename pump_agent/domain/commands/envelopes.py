from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class PlainCommand(str, Enum):
    START = "START"
    STOP = "STOP"
    RESET = "RESET"
    STATUS = "STATUS"


class EnvelopeCommand(str, Enum):
    START = "START"
    STOP = "STOP"
    RESET = "RESET"
    STATUS = "STATUS"
    START_ALL = "START_ALL"
    STOP_ALL = "STOP_ALL"
    RESET_ALL = "RESET_ALL"
    SET_PROTECTION = "SET_PROTECTION"
    SET_THRESHOLDS = "SET_THRESHOLDS"
    SET_DELAYS = "SET_DELAYS"
    SET_SCHEDULE = "SET_SCHEDULE"
    SET_RURAFLEX = "SET_RURAFLEX"
    GET_SETTINGS = "GET_SETTINGS"
    UPDATE_FIRMWARE = "UPDATE_FIRMWARE"


# Envelope keys accepted by each configuration command, mapped to model fields.
PROTECTION_FIELDS: Dict[EnvelopeCommand, Dict[str, str]] = {
    EnvelopeCommand.SET_PROTECTION: {
        "overcurrent_enabled": "overcurrent_enabled",
        "dryrun_enabled": "dryrun_enabled",
    },
    EnvelopeCommand.SET_THRESHOLDS: {
        "max_current": "max_current",
        "dry_current": "dry_current",
    },
    EnvelopeCommand.SET_DELAYS: {
        "overcurrent_delay_s": "overcurrent_delay_s",
        "dryrun_delay_s": "dryrun_delay_s",
    },
}

SCHEDULE_FIELDS: Dict[EnvelopeCommand, Dict[str, str]] = {
    EnvelopeCommand.SET_SCHEDULE: {
        "enabled": "enabled",
        "start_hour": "start_hour",
        "start_minute": "start_minute",
        "end_hour": "end_hour",
        "end_minute": "end_minute",
        "days": "days",
    },
    EnvelopeCommand.SET_RURAFLEX: {
        "enabled": "tou_enabled",
    },
}


class CommandEnvelope(BaseModel):
    """``{"command": "<NAME>", ...}``; any extra keys are the command's fields."""

    model_config = ConfigDict(extra="allow")

    command: str
    pump: Optional[int] = None
    url: Optional[str] = None

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def known_command(self) -> Optional[EnvelopeCommand]:
        try:
            return EnvelopeCommand(self.command.strip().upper())
        except ValueError:
            return None
