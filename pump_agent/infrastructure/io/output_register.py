import logging
from typing import Sequence, Tuple

from pump_agent.infrastructure.io.io_driver import ALL_OUTPUTS_OFF, OutputDriver

logger = logging.getLogger(__name__)


class OutputRegister:
    """Active-low digital output byte: a cleared bit energises the channel.

    Channels that are not mapped to a contactor or a fault alarm are always
    held off. Each commit computes the whole byte first and hands it to the
    driver in a single write.
    """

    def __init__(
        self,
        driver: OutputDriver,
        *,
        contactor_channels: Sequence[int],
        alarm_channels: Sequence[int],
    ):
        if len(contactor_channels) != len(alarm_channels):
            raise ValueError("Each contactor needs a matching alarm channel")

        self._driver = driver
        self.contactor_channels: Tuple[int, ...] = tuple(contactor_channels)
        self.alarm_channels: Tuple[int, ...] = tuple(alarm_channels)
        self.value = ALL_OUTPUTS_OFF

    def compose(self, contactors: Sequence[bool], alarms: Sequence[bool]) -> int:
        value = ALL_OUTPUTS_OFF
        for channel, on in zip(self.contactor_channels, contactors):
            if on:
                value &= ~(1 << channel)
        for channel, on in zip(self.alarm_channels, alarms):
            if on:
                value &= ~(1 << channel)
        return value & 0xFF

    def commit(self, contactors: Sequence[bool], alarms: Sequence[bool]) -> int:
        value = self.compose(contactors, alarms)
        if value != self.value:
            logger.debug("DO register 0x%02X -> 0x%02X", self.value, value)
        self.value = value
        self._driver.write_outputs(value)
        return value

    def all_off(self) -> int:
        self.value = ALL_OUTPUTS_OFF
        self._driver.write_outputs(ALL_OUTPUTS_OFF)
        return self.value

    def channel_on(self, channel: int) -> bool:
        return not self.value & (1 << channel)

    def contactor_on(self, index: int) -> bool:
        return self.channel_on(self.contactor_channels[index])
