import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from pump_agent.domain.actuator.enums import ControlMode
from pump_agent.infrastructure.io.io_driver import InputDriver

logger = logging.getLogger(__name__)

# Bit positions in the DI byte (bit set = input energised).
DI_START_BUTTON = 0
DI_STOP_BUTTON = 1
DI_MODE_SELECTOR = 2
DI_CONTACTOR_FEEDBACK = 3


class DebouncedInput:
    """Accepts a level change only once it has been stable for ``debounce_s``."""

    def __init__(self, debounce_s: float, initial: bool):
        self.debounce_s = debounce_s
        self.state = initial
        self._last_change: Optional[float] = None

    def update(self, level: bool, now: float) -> bool:
        if level == self.state:
            return False
        if self._last_change is not None and now - self._last_change <= self.debounce_s:
            return False
        self._last_change = now
        self.state = level
        return True


@dataclass
class PanelEvents:
    start_pressed: bool = False
    stop_pressed: bool = False
    mode: ControlMode = ControlMode.REMOTE
    feedback: List[bool] = field(default_factory=list)
    raw: int = 0


class PanelInputs:
    """Front-panel buttons, LOCAL/REMOTE selector and contactor feedback.

    ``has_buttons`` is False on the three-pump layout, where DI1-DI3 carry
    feedback contacts instead and the unit is always under remote control.
    """

    def __init__(
        self,
        driver: InputDriver,
        *,
        feedback_bits: Sequence[int],
        has_buttons: bool = True,
        debounce_s: float = 0.05,
    ):
        self._driver = driver
        self.feedback_bits = tuple(feedback_bits)
        self.has_buttons = has_buttons
        self._start = DebouncedInput(debounce_s, initial=False)
        # STOP is a normally-closed contact: energised while not pressed.
        self._stop = DebouncedInput(debounce_s, initial=True)
        self.last_raw = 0

    def poll(self, now: float) -> PanelEvents:
        raw = self._driver.read_inputs()
        self.last_raw = raw

        events = PanelEvents(
            raw=raw,
            feedback=[bool(raw & (1 << bit)) for bit in self.feedback_bits],
        )

        if not self.has_buttons:
            return events

        events.mode = ControlMode.LOCAL if raw & (1 << DI_MODE_SELECTOR) else ControlMode.REMOTE

        if self._start.update(bool(raw & (1 << DI_START_BUTTON)), now) and self._start.state:
            events.start_pressed = True

        if self._stop.update(bool(raw & (1 << DI_STOP_BUTTON)), now) and not self._stop.state:
            events.stop_pressed = True

        return events
