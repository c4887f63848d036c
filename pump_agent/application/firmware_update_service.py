import logging
from typing import Callable, Optional

import httpx

from pump_agent.core.exceptions import FirmwareUpdateBusyError, FirmwareUpdateError
from pump_agent.domain.firmware.update_job import FirmwareUpdateJob, UpdateStatus
from pump_agent.infrastructure.firmware.flash_sink import FlashSink

logger = logging.getLogger(__name__)


class FirmwareUpdateService:
    """Streams a firmware image over HTTP(S) into a flash sink.

    The download blocks the caller until it completes or fails. Anything
    short of an exact, complete image aborts the sink, so the running
    firmware is never replaced by a partial one.
    """

    def __init__(
        self,
        sink: FlashSink,
        *,
        chunk_size: int = 1024,
        timeout_s: float = 30.0,
        client_factory: Optional[Callable[[], httpx.Client]] = None,
    ):
        self._sink = sink
        self.chunk_size = chunk_size
        self._client_factory = client_factory or (
            lambda: httpx.Client(timeout=timeout_s, follow_redirects=True)
        )
        self.job = FirmwareUpdateJob()

    def run(self, url: str) -> bool:
        if self.job.busy:
            raise FirmwareUpdateBusyError(f"Firmware update already {self.job.status.value.lower()}")

        self.job.begin(url)

        logger.info("===========================================")
        logger.info("REMOTE FIRMWARE UPDATE STARTED")
        logger.info("URL: %s", url)
        logger.info("===========================================")

        try:
            self._download(url)
        except FirmwareUpdateError as exc:
            return self._fail(str(exc))
        except httpx.HTTPError as exc:
            return self._fail(f"Connection error: {exc}")
        except OSError as exc:
            return self._fail(f"Flash error: {exc}")

        self.job.status = UpdateStatus.SUCCEEDED
        logger.info("FIRMWARE UPDATE SUCCESS (%s bytes)", self.job.bytes_written)
        return True

    def _fail(self, reason: str) -> bool:
        self._sink.abort()
        self.job.fail(reason)
        logger.error("Firmware update failed: %s", reason)
        return False

    def _download(self, url: str) -> None:
        job = self.job

        with self._client_factory() as client:
            with client.stream("GET", url, headers={"Accept-Encoding": "identity"}) as response:
                if response.status_code != httpx.codes.OK:
                    raise FirmwareUpdateError(f"Firmware download failed, HTTP code: {response.status_code}")

                # Content-Length counts encoded bytes; only an unencoded body can be checked against it.
                encoding = response.headers.get("Content-Encoding", "identity").strip().lower()
                if encoding != "identity":
                    raise FirmwareUpdateError(f"Unsupported Content-Encoding: {encoding}")

                total = self._content_length(response)
                job.total_bytes = total
                logger.info("Firmware size: %s bytes", total)

                if not self._sink.begin(total):
                    raise FirmwareUpdateError("Not enough space for firmware image")

                last_progress = 0
                for chunk in response.iter_bytes(self.chunk_size):
                    if job.bytes_written + len(chunk) > total:
                        raise FirmwareUpdateError("Server sent more data than announced")

                    written = self._sink.write(chunk)
                    if written != len(chunk):
                        raise FirmwareUpdateError(f"Write error ({written}/{len(chunk)} bytes)")

                    job.bytes_written += written

                    progress = job.progress_percent
                    if progress // 10 > last_progress // 10:
                        last_progress = progress
                        logger.info("Progress: %s%%", progress)

        logger.info("Downloaded: %s bytes", job.bytes_written)
        if job.bytes_written != total:
            raise FirmwareUpdateError(f"Download incomplete ({job.bytes_written}/{total} bytes)")

        job.status = UpdateStatus.VERIFYING
        if not self._sink.finalize():
            raise FirmwareUpdateError("Image finalize failed")

    @staticmethod
    def _content_length(response: httpx.Response) -> int:
        raw = response.headers.get("Content-Length")
        try:
            total = int(raw) if raw is not None else 0
        except ValueError:
            total = 0
        if total <= 0:
            raise FirmwareUpdateError("Invalid content length")
        return total
