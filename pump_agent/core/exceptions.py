class NetworkUnavailableError(RuntimeError):
    """Neither the wired nor the wireless transport could be brought up."""


class FirmwareUpdateError(RuntimeError):
    """Raised inside the executor to abort an in-progress image write."""


class FirmwareUpdateBusyError(RuntimeError):
    """A firmware job is already downloading or verifying."""


class RestartRequested(Exception):
    """Propagated to the entry point, which exits so the supervisor restarts us."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
