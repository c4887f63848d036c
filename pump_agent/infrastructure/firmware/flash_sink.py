import logging
import os
import shutil
from pathlib import Path
from typing import BinaryIO, Optional, Protocol

logger = logging.getLogger(__name__)


class FlashSink(Protocol):
    def begin(self, total_bytes: int) -> bool: ...

    def write(self, chunk: bytes) -> int: ...

    def abort(self) -> None: ...

    def finalize(self) -> bool: ...


class FileFlashSink:
    """Stages an image next to the active one and swaps it in on finalize.

    The active image path is only ever touched by the final atomic replace.
    """

    def __init__(self, staging_path: Path, image_path: Path):
        self.staging_path = Path(staging_path)
        self.image_path = Path(image_path)
        self._handle: Optional[BinaryIO] = None
        self._expected = 0
        self._written = 0

    def begin(self, total_bytes: int) -> bool:
        self.abort()
        self.staging_path.parent.mkdir(parents=True, exist_ok=True)

        free = shutil.disk_usage(self.staging_path.parent).free
        if total_bytes > free:
            logger.error("Not enough space for firmware image (%s > %s bytes)", total_bytes, free)
            return False

        self._handle = self.staging_path.open("wb")
        self._expected = total_bytes
        self._written = 0
        return True

    def write(self, chunk: bytes) -> int:
        if self._handle is None:
            return 0
        try:
            written = self._handle.write(chunk)
        except OSError:
            logger.exception("Firmware staging write failed")
            return 0
        self._written += written
        return written

    def abort(self) -> None:
        handle, self._handle = self._handle, None
        self._written = 0
        try:
            if handle is not None:
                handle.close()
            self.staging_path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to remove staged firmware: %s", self.staging_path)

    def finalize(self) -> bool:
        if self._handle is None:
            return False

        if self._written != self._expected:
            logger.error("Refusing to finalize incomplete image (%s/%s)", self._written, self._expected)
            self.abort()
            return False

        self._handle.flush()
        os.fsync(self._handle.fileno())
        self._handle.close()
        self._handle = None

        self.staging_path.replace(self.image_path)
        logger.info("Firmware image installed: %s", self.image_path)
        return True
