import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import httpx

from pump_agent.domain.actuator.actuator import Actuator
from pump_agent.domain.actuator.enums import FaultKind

logger = logging.getLogger(__name__)

MAX_QUEUED_NOTICES = 50


class WebhookNotifier:
    """POSTs fault notifications; undelivered ones are queued on disk and retried."""

    def __init__(
        self,
        url: Optional[str],
        device_id: str,
        queue_path: Path,
        *,
        client: Optional[httpx.Client] = None,
        timeout_s: float = 5.0,
        max_queued: int = MAX_QUEUED_NOTICES,
    ):
        self.url = url
        self.device_id = device_id
        self.queue_path = Path(queue_path)
        self.timeout_s = timeout_s
        self.max_queued = max_queued
        self._client = client or httpx.Client(timeout=timeout_s)

    def is_enabled(self) -> bool:
        return bool(self.url)

    def on_fault(self, actuator: Actuator, kind: FaultKind) -> None:
        if not self.is_enabled():
            logger.debug("Notification webhook not configured, skipping fault notice")
            return

        payload = {
            "device_id": self.device_id,
            "pump": actuator.actuator_id,
            "fault": kind.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.send(payload)

    def on_fault_cleared(self, actuator: Actuator) -> None:
        logger.debug("Pump %s fault cleared", actuator.actuator_id)

    def send(self, payload: dict) -> bool:
        """Deliver queued notices oldest first, then ``payload``.

        Delivery stops at the first failure, so an unreachable endpoint costs a
        single request; everything not yet delivered goes back on the queue.
        """
        pending = self._read_queue()
        pending.append(payload)

        delivered = 0
        for item in pending:
            if not self._post(item):
                break
            delivered += 1

        remaining = pending[delivered:]
        self._write_queue(remaining)

        if remaining:
            logger.warning("Notification queued (offline): %s", payload)
            return False

        logger.info("Notification sent: %s", payload)
        return True

    def _post(self, payload: dict) -> bool:
        try:
            resp = self._client.post(self.url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Webhook responded with error: %s %s", exc.response.status_code, exc.response.text)
            return False
        except httpx.RequestError as exc:
            logger.error("Webhook request error: %s", exc)
            return False
        return True

    def _read_queue(self) -> List[dict]:
        if not self.queue_path.exists():
            return []

        try:
            lines = self.queue_path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            logger.error("Failed to read notification queue: %s", exc)
            return []

        queued = []
        for line in lines:
            if not line.strip():
                continue
            try:
                queued.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Dropping corrupt queued notification: %r", line)
        return queued

    def _write_queue(self, payloads: List[dict]) -> None:
        if len(payloads) > self.max_queued:
            logger.warning("Notification queue full, dropping %s oldest", len(payloads) - self.max_queued)
            payloads = payloads[-self.max_queued:]

        try:
            if payloads:
                self.queue_path.parent.mkdir(parents=True, exist_ok=True)
                self.queue_path.write_text(
                    "".join(json.dumps(item) + "\n" for item in payloads),
                    encoding="utf-8",
                )
            else:
                self.queue_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to rewrite notification queue: %s", exc)

    def close(self) -> None:
        self._client.close()
