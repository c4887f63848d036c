# pump_agent/domain/actuator/enums.py

from enum import Enum


class ActuatorState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    FAULT = "FAULT"


class FaultKind(str, Enum):
    NONE = "NONE"
    OVERCURRENT = "OVERCURRENT"
    DRY_RUN = "DRY_RUN"
    SENSOR_OFFLINE = "SENSOR_OFFLINE"
    START_TIMEOUT = "START_TIMEOUT"


class ControlMode(str, Enum):
    REMOTE = "REMOTE"
    LOCAL = "LOCAL"


class CommandSource(str, Enum):
    BROKER = "BROKER"
    CONSOLE = "CONSOLE"
    BUTTON = "BUTTON"
    SCHEDULE = "SCHEDULE"
