from dataclasses import dataclass
from enum import Enum
from typing import Optional


class UpdateStatus(str, Enum):
    IDLE = "IDLE"
    DOWNLOADING = "DOWNLOADING"
    VERIFYING = "VERIFYING"
    FAILED = "FAILED"
    SUCCEEDED = "SUCCEEDED"


IDLE_STATUSES = (UpdateStatus.IDLE, UpdateStatus.FAILED, UpdateStatus.SUCCEEDED)


@dataclass
class FirmwareUpdateJob:
    source_url: Optional[str] = None
    total_bytes: int = 0
    bytes_written: int = 0
    status: UpdateStatus = UpdateStatus.IDLE
    error: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.status not in IDLE_STATUSES

    @property
    def progress_percent(self) -> int:
        if self.total_bytes <= 0:
            return 0
        return min(100, self.bytes_written * 100 // self.total_bytes)

    def begin(self, url: str) -> None:
        self.source_url = url
        self.total_bytes = 0
        self.bytes_written = 0
        self.error = None
        self.status = UpdateStatus.DOWNLOADING

    def fail(self, reason: str) -> None:
        self.error = reason
        self.status = UpdateStatus.FAILED
