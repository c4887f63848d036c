from dataclasses import dataclass
from typing import Tuple

from pump_agent.infrastructure.io.panel_inputs import DI_CONTACTOR_FEEDBACK

FIRST_ALARM_CHANNEL = 4


@dataclass(frozen=True)
class BoardLayout:
    contactor_channels: Tuple[int, ...]
    alarm_channels: Tuple[int, ...]
    feedback_bits: Tuple[int, ...]
    has_buttons: bool

    @classmethod
    def for_pumps(cls, pump_count: int) -> "BoardLayout":
        """Single pump: DO0 contactor, DO4 alarm, DI4 feedback, DI1-DI3 panel.

        Multi pump: DO0..DO2 contactors, DO4..DO6 alarms, DI1..DI3 feedback.
        """
        if pump_count == 1:
            return cls(
                contactor_channels=(0,),
                alarm_channels=(FIRST_ALARM_CHANNEL,),
                feedback_bits=(DI_CONTACTOR_FEEDBACK,),
                has_buttons=True,
            )

        return cls(
            contactor_channels=tuple(range(pump_count)),
            alarm_channels=tuple(FIRST_ALARM_CHANNEL + index for index in range(pump_count)),
            feedback_bits=tuple(range(pump_count)),
            has_buttons=False,
        )
