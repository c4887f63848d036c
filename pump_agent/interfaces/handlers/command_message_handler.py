import logging
from collections import deque
from typing import Deque, Tuple

from pump_agent.application.command_dispatcher import CommandDispatcher
from pump_agent.core.exceptions import RestartRequested
from pump_agent.domain.actuator.enums import CommandSource

logger = logging.getLogger(__name__)


class CommandMessageHandler:
    """Buffers inbound command strings and feeds them to the dispatcher.

    Messages arrive from inside the broker client's network loop; they are
    only queued there and are dispatched later from the control loop.
    """

    def __init__(self, dispatcher: CommandDispatcher, *, max_pending: int = 32):
        self._dispatcher = dispatcher
        self._pending: Deque[Tuple[str, CommandSource]] = deque(maxlen=max_pending)

    def on_broker_message(self, message: str) -> None:
        self.enqueue(message, CommandSource.BROKER)

    def on_console_line(self, line: str) -> None:
        self.enqueue(line, CommandSource.CONSOLE)

    def enqueue(self, message: str, source: CommandSource) -> None:
        if len(self._pending) == self._pending.maxlen:
            logger.warning("Command queue full, dropping oldest command")
        self._pending.append((message, source))

    @property
    def pending(self) -> int:
        return len(self._pending)

    def drain(self) -> int:
        handled = 0
        while self._pending:
            message, source = self._pending.popleft()
            try:
                self._dispatcher.dispatch(message, source)
            except RestartRequested:
                raise
            except Exception:
                logger.exception("Error while handling command %r", message)
            handled += 1
        return handled
