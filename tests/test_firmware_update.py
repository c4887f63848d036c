"""
Tests for the OTA executor (pump_agent/application/firmware_update_service.py)
and the file-backed flash sink.
"""
import gzip
import logging

import httpx
import pytest

from conftest import MemoryFlashSink, mock_http_client
from pump_agent.application.firmware_update_service import FirmwareUpdateService
from pump_agent.core.exceptions import FirmwareUpdateBusyError
from pump_agent.domain.firmware.update_job import UpdateStatus
from pump_agent.infrastructure.firmware.flash_sink import FileFlashSink

URL = "https://updates.example/pump.bin"
IMAGE = bytes(range(256)) * 4  # 1024 bytes


class DroppingStream(httpx.SyncByteStream):
    def __init__(self, first: bytes):
        self._first = first

    def __iter__(self):
        yield self._first
        raise httpx.ReadError("connection reset by peer")


@pytest.fixture
def sink():
    return MemoryFlashSink()


def service_for(sink, handler, **kwargs):
    return FirmwareUpdateService(sink, chunk_size=128, client_factory=mock_http_client(handler), **kwargs)


def test_complete_download_is_finalized_with_progress(sink, caplog):
    """
    Tests a complete image is written, finalized and logged once per 10% band crossed.

    Why: A chunk can jump over a multiple of ten (9% -> 11%); the milestone must still be logged.
    """
    requested = []

    def handler(request):
        requested.append((str(request.url), request.headers.get("Accept-Encoding")))
        return httpx.Response(200, content=IMAGE)

    service = service_for(sink, handler)

    with caplog.at_level(logging.INFO, logger="pump_agent.application.firmware_update_service"):
        assert service.run(URL) is True

    assert requested == [(URL, "identity")]
    assert bytes(sink.data) == IMAGE
    assert sink.finalized is True
    assert service.job.status == UpdateStatus.SUCCEEDED
    assert service.job.bytes_written == len(IMAGE)

    reports = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Progress:")]
    assert reports == [f"Progress: {value}%" for value in (12, 25, 37, 50, 62, 75, 87, 100)]


def test_truncated_download_never_finalizes(sink):
    """
    Tests an 800-byte body against a 1000-byte Content-Length aborts the sink.

    Safety: A partially written image must never replace the running firmware.
    """
    def handler(request):
        return httpx.Response(200, headers={"Content-Length": "1000"}, content=b"\xaa" * 800)

    service = service_for(sink, handler)

    assert service.run(URL) is False
    assert sink.finalized is False
    assert sink.aborted is True
    assert service.job.status == UpdateStatus.FAILED
    assert "incomplete" in service.job.error


def test_connection_drop_mid_download_aborts(sink):
    def handler(request):
        return httpx.Response(200, headers={"Content-Length": "1000"}, stream=DroppingStream(b"\xbb" * 800))

    service = service_for(sink, handler)

    assert service.run(URL) is False
    assert sink.aborted is True
    assert sink.finalized is False
    assert service.job.error.startswith("Connection error")


def test_oversized_body_is_rejected(sink):
    def handler(request):
        return httpx.Response(200, headers={"Content-Length": "500"}, content=b"\xcc" * 800)

    service = service_for(sink, handler)

    assert service.run(URL) is False
    assert sink.aborted is True
    assert service.job.bytes_written <= 500


@pytest.mark.parametrize("status_code", [404, 500])
def test_non_ok_status_fails_before_writing(sink, status_code):
    service = service_for(sink, lambda request: httpx.Response(status_code))

    assert service.run(URL) is False
    assert sink.begun is False
    assert "HTTP code" in service.job.error


def test_missing_content_length_is_rejected(sink):
    def handler(request):
        return httpx.Response(200, stream=httpx.ByteStream(IMAGE))

    service = service_for(sink, handler)

    assert service.run(URL) is False
    assert service.job.error == "Invalid content length"
    assert sink.begun is False


def test_sink_refusing_image_size_fails(sink):
    sink.accept_begin = False
    service = service_for(sink, lambda request: httpx.Response(200, content=IMAGE))

    assert service.run(URL) is False
    assert sink.data == bytearray()


def test_short_write_aborts(sink):
    sink.short_write = True
    service = service_for(sink, lambda request: httpx.Response(200, content=IMAGE))

    assert service.run(URL) is False
    assert "Write error" in service.job.error
    assert sink.aborted is True


def test_second_job_while_busy_is_refused(sink):
    service = service_for(sink, lambda request: httpx.Response(200, content=IMAGE))
    service.job.status = UpdateStatus.DOWNLOADING

    with pytest.raises(FirmwareUpdateBusyError):
        service.run(URL)


def test_failed_job_can_be_retried(sink):
    responses = [httpx.Response(503), httpx.Response(200, content=IMAGE)]
    service = service_for(sink, lambda request: responses.pop(0))

    assert service.run(URL) is False
    assert service.run(URL) is True
    assert service.job.error is None


def test_file_sink_swaps_in_complete_image(tmp_path):
    staging = tmp_path / "firmware.bin"
    image = tmp_path / "firmware.img"
    image.write_bytes(b"old")
    sink = FileFlashSink(staging, image)

    assert sink.begin(5) is True
    assert sink.write(b"hello") == 5
    assert sink.finalize() is True

    assert image.read_bytes() == b"hello"
    assert not staging.exists()


def test_file_sink_keeps_active_image_on_incomplete_write(tmp_path):
    staging = tmp_path / "firmware.bin"
    image = tmp_path / "firmware.img"
    image.write_bytes(b"old")
    sink = FileFlashSink(staging, image)

    sink.begin(10)
    sink.write(b"hello")

    assert sink.finalize() is False
    assert image.read_bytes() == b"old"
    assert not staging.exists()


def test_file_sink_abort_removes_staging(tmp_path):
    staging = tmp_path / "firmware.bin"
    sink = FileFlashSink(staging, tmp_path / "firmware.img")

    sink.begin(10)
    sink.write(b"abc")
    sink.abort()

    assert not staging.exists()
    assert sink.write(b"more") == 0


def test_encoded_body_is_rejected_before_flashing(sink):
    """
    Tests a gzip-encoded body fails cleanly instead of tripping the length check mid-write.

    Safety: Content-Length counts the compressed bytes, so an encoded image cannot be verified.
    """
    body = gzip.compress(IMAGE)

    def handler(request):
        return httpx.Response(
            200,
            headers={"Content-Encoding": "gzip", "Content-Length": str(len(body))},
            stream=httpx.ByteStream(body),
        )

    service = service_for(sink, handler)

    assert service.run(URL) is False
    assert sink.begun is False
    assert service.job.status == UpdateStatus.FAILED
    assert "Content-Encoding" in service.job.error


def test_flash_error_fails_job_and_frees_it(tmp_path):
    """
    Tests an OSError from the sink fails the job so the next update can start.

    Safety: A job stuck in DOWNLOADING would refuse every later UPDATE_FIRMWARE until reboot.
    """
    staging = tmp_path / "firmware.bin"
    staging.mkdir()
    sink = FileFlashSink(staging, tmp_path / "firmware.img")
    service = service_for(sink, lambda request: httpx.Response(200, content=IMAGE))

    assert service.run(URL) is False
    assert service.job.status == UpdateStatus.FAILED
    assert service.job.error.startswith("Flash error")
    assert service.job.busy is False


def test_finalize_error_aborts_staged_image(sink):
    def failing_finalize():
        raise OSError("fsync failed")

    sink.finalize = failing_finalize
    service = service_for(sink, lambda request: httpx.Response(200, content=IMAGE))

    assert service.run(URL) is False
    assert sink.aborted is True
    assert service.job.status == UpdateStatus.FAILED
