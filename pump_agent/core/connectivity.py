import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from pump_agent.core.clock import Clock
from pump_agent.core.exceptions import NetworkUnavailableError
from pump_agent.core.mqtt_client import HandshakeState, MessageCallback
from pump_agent.core.mqtt_topics import DeviceTopics, StatusPayloads
from pump_agent.domain.models.broker_credentials import BrokerCredentials
from pump_agent.domain.network.network_link import (
    BrokerSession,
    LinkKind,
    LinkStatus,
    NetworkLink,
)
from pump_agent.infrastructure.network.transport import LeaseEvent, TransportProvider

logger = logging.getLogger(__name__)


class BrokerClient(Protocol):
    on_message: Optional[MessageCallback]

    @property
    def is_connected(self) -> bool: ...

    def begin_connect(
        self,
        host: str,
        port: int,
        *,
        username: str,
        password: str,
        use_tls: bool,
        will_topic: str,
        will_payload: str,
        bind_address: Optional[str] = None,
    ) -> bool: ...

    def poll_connect(self, wait_s: float = 0.0) -> HandshakeState: ...

    def subscribe(self, topic: str) -> bool: ...

    def publish(self, topic: str, payload: str, *, retain: bool = False) -> bool: ...

    def loop(self) -> bool: ...

    def disconnect(self) -> None: ...


BrokerClientFactory = Callable[[], BrokerClient]
MessageHandler = Callable[[str], None]


@dataclass
class ConnectivityConfig:
    connect_timeout_s: float = 10.0
    retry_interval_s: float = 5.0
    stale_timeout_s: float = 90.0
    max_publish_failures: int = 3
    max_connect_failures: int = 3
    plaintext_port: int = 1883
    max_payload_size: int = 512
    link_connect_timeout_s: float = 10.0
    wired_reprobe_interval_s: float = 30.0
    network_retry_interval_s: float = 15.0


@dataclass
class _PendingLink:
    kind: LinkKind
    deadline: float
    reason: str
    fallback: Optional[LinkKind] = None
    escalate_tls: bool = False


@dataclass
class _PendingHandshake:
    client: BrokerClient
    deadline: float
    will_topic: str
    will_payload: str


class ConnectivityManager:
    """Owns transport selection and the broker session on top of it.

    The wired link is preferred. Every transport change tears the broker
    session down, so the next session always starts with a fresh handshake
    and fresh subscriptions.
    """

    def __init__(
        self,
        wired: TransportProvider,
        wireless: TransportProvider,
        client_factory: BrokerClientFactory,
        credentials: BrokerCredentials,
        topics: DeviceTopics,
        clock: Clock,
        config: Optional[ConnectivityConfig] = None,
    ):
        self._providers: Dict[LinkKind, TransportProvider] = {
            LinkKind.WIRED: wired,
            LinkKind.WIRELESS: wireless,
        }
        self._client_factory = client_factory
        self.credentials = credentials
        self.topics = topics
        self._clock = clock
        self.config = config or ConnectivityConfig()

        self.links: Dict[LinkKind, NetworkLink] = {
            LinkKind.WIRED: NetworkLink(LinkKind.WIRED),
            LinkKind.WIRELESS: NetworkLink(LinkKind.WIRELESS),
        }
        self.active_kind: Optional[LinkKind] = None
        self.session = BrokerSession()

        self.publish_fail_count = 0
        self.connect_fail_count = 0
        self.tls_escalated = False

        self._client: Optional[BrokerClient] = None
        self._handshake: Optional[_PendingHandshake] = None
        self._pending_link: Optional[_PendingLink] = None
        self._last_broker_attempt: Optional[float] = None
        self._last_wired_probe: Optional[float] = None
        self._last_network_retry: Optional[float] = None

        self._message_handler: Optional[MessageHandler] = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def set_message_handler(self, handler: MessageHandler) -> None:
        self._message_handler = handler

    @property
    def is_connected(self) -> bool:
        return self.session.connected

    @property
    def network_label(self) -> str:
        if self.active_kind is None:
            return "none"
        return self.active_kind.telemetry_label

    # ------------------------------------------------------------------
    # Transport selection
    # ------------------------------------------------------------------
    def select_transport(self) -> LinkKind:
        """Bring up a transport at boot, wired first."""
        now = self._clock.monotonic()

        logger.info("=== Trying wired transport ===")
        if self._bring_up(LinkKind.WIRED, now):
            self._providers[LinkKind.WIRELESS].teardown()
            self._switch_transport(LinkKind.WIRED, now, "boot")
            return LinkKind.WIRED

        logger.info("=== Wired failed, trying wireless ===")
        if self._bring_up(LinkKind.WIRELESS, now):
            self._switch_transport(LinkKind.WIRELESS, now, "boot")
            return LinkKind.WIRELESS

        raise NetworkUnavailableError("No network connection available")

    def _bring_up(self, kind: LinkKind, now: float) -> bool:
        """Blocking bring-up bounded by ``link_connect_timeout_s``; boot only."""
        link = self.links[kind]
        link.set_status(LinkStatus.CONNECTING, now)

        ok = self._providers[kind].connect(self.config.link_connect_timeout_s)

        link.set_status(LinkStatus.UP if ok else LinkStatus.DOWN, self._clock.monotonic())
        return ok

    def _refresh_link(self, kind: LinkKind, now: float) -> bool:
        up = self._providers[kind].link_up()
        changed = self.links[kind].set_status(LinkStatus.UP if up else LinkStatus.DOWN, now)
        if changed:
            logger.info("%s link %s", kind.value, "up" if up else "down")
        return up

    def _switch_transport(self, kind: LinkKind, now: float, reason: str) -> None:
        previous = self.active_kind
        self._teardown_session(f"transport switch ({reason})")

        self.active_kind = kind
        self.connect_fail_count = 0
        self.publish_fail_count = 0
        self._last_broker_attempt = None
        self._last_wired_probe = now

        logger.info(
            "Active transport: %s -> %s (%s)",
            previous.value if previous else "none",
            kind.value,
            reason,
        )

    def _lose_transport(self, now: float) -> None:
        logger.error("No transport available, retrying every %ss", self.config.network_retry_interval_s)
        self._teardown_session("all transports down")
        self.active_kind = None
        self.tls_escalated = False
        self._last_network_retry = now

    # ------------------------------------------------------------------
    # Periodic maintenance
    # ------------------------------------------------------------------
    def maintain(self) -> None:
        """Non-blocking; link bring-up and the broker handshake advance one poll per call."""
        now = self._clock.monotonic()

        if self._pending_link is not None:
            if not self._poll_link(now):
                return
        elif not self._maintain_links(now):
            return

        self._maintain_broker(now)

    def _maintain_links(self, now: float) -> bool:
        if self.active_kind is None:
            return self._retry_network(now)

        if self.active_kind == LinkKind.WIRED:
            return self._maintain_wired(now)

        return self._maintain_wireless(now)

    def _begin_link(
        self,
        kind: LinkKind,
        now: float,
        reason: str,
        *,
        fallback: Optional[LinkKind] = None,
        escalate_tls: bool = False,
    ) -> None:
        self.links[kind].set_status(LinkStatus.CONNECTING, now)
        self._providers[kind].begin_connect()
        self._pending_link = _PendingLink(
            kind=kind,
            deadline=now + self.config.link_connect_timeout_s,
            reason=reason,
            fallback=fallback,
            escalate_tls=escalate_tls,
        )

    def _poll_link(self, now: float) -> bool:
        """Advance a pending bring-up; True once a usable transport is active."""
        pending = self._pending_link
        up = self._providers[pending.kind].poll_connect()
        if not up and now < pending.deadline:
            return False

        self._pending_link = None
        self.links[pending.kind].set_status(LinkStatus.UP if up else LinkStatus.DOWN, now)

        if up:
            if pending.escalate_tls:
                self.tls_escalated = True
            elif pending.kind == LinkKind.WIRED:
                self.tls_escalated = False
            self._switch_transport(pending.kind, now, pending.reason)
            return True

        logger.warning("%s link not available after %ss", pending.kind.value, self.config.link_connect_timeout_s)

        if pending.escalate_tls:
            logger.error("Wireless unavailable, staying on wired")
            return self.active_kind is not None

        if pending.fallback is not None:
            self._begin_link(pending.fallback, now, pending.reason)
            return self._poll_link(now)

        self._lose_transport(now)
        return False

    def _retry_network(self, now: float) -> bool:
        if (
            self._last_network_retry is not None
            and now - self._last_network_retry < self.config.network_retry_interval_s
        ):
            return False

        self._last_network_retry = now
        logger.info("Retrying network connection...")

        self._begin_link(LinkKind.WIRED, now, "network restored", fallback=LinkKind.WIRELESS)
        return self._poll_link(now)

    def _maintain_wired(self, now: float) -> bool:
        wired = self._providers[LinkKind.WIRED]
        event = wired.maintain_lease()

        if event in (LeaseEvent.RENEW_FAILED, LeaseEvent.REBIND_FAILED):
            logger.warning("Wired lease %s", event.value)
            self.links[LinkKind.WIRED].set_status(LinkStatus.DOWN, now)
        elif not self._refresh_link(LinkKind.WIRED, now):
            logger.warning("Wired link down (cable disconnected?)")

        if self.links[LinkKind.WIRED].is_up:
            return True

        return self._fail_over(LinkKind.WIRELESS, now, "wired link lost")

    def _maintain_wireless(self, now: float) -> bool:
        wireless_up = self._refresh_link(LinkKind.WIRELESS, now)

        if not self.tls_escalated and self._reprobe_due(now):
            self._last_wired_probe = now
            if self._refresh_link(LinkKind.WIRED, now):
                logger.info("Wired link is back, switching over")
                self._switch_transport(LinkKind.WIRED, now, "wired link restored")
                return True

        if wireless_up:
            return True

        logger.warning("Wireless association lost")
        return self._fail_over(LinkKind.WIRED, now, "wireless link lost")

    def _reprobe_due(self, now: float) -> bool:
        return (
            self._last_wired_probe is None
            or now - self._last_wired_probe >= self.config.wired_reprobe_interval_s
        )

    def _fail_over(self, target: LinkKind, now: float, reason: str) -> bool:
        if self._refresh_link(target, now):
            if target == LinkKind.WIRED:
                self.tls_escalated = False
            self._switch_transport(target, now, reason)
            return True

        # The active link is already gone; run without a transport until the target is up.
        self._teardown_session(reason)
        self.active_kind = None
        self._begin_link(target, now, reason)
        return self._poll_link(now)

    def _maintain_broker(self, now: float) -> None:
        if self._handshake is not None:
            self._poll_handshake(now)
            return

        if self.session.connected:
            client = self._client
            if client is None or not client.loop():
                logger.warning("MQTT connection lost")
                self._teardown_session("connection lost")
                return

            if self._is_stale(now):
                logger.warning(
                    "MQTT connection stale (no traffic for %ss), forcing reconnect",
                    self.config.stale_timeout_s,
                )
                self._teardown_session("stale")
                self._last_broker_attempt = None
            return

        if (
            self._last_broker_attempt is not None
            and now - self._last_broker_attempt < self.config.retry_interval_s
        ):
            return

        self._last_broker_attempt = now
        logger.info("Attempting MQTT reconnect...")
        if not self._start_handshake(self.credentials, None, None, now):
            self._record_connect_failure(now)

    def _is_stale(self, now: float) -> bool:
        last = self.session.last_activity_time
        return last is not None and now - last > self.config.stale_timeout_s

    # ------------------------------------------------------------------
    # Broker session
    # ------------------------------------------------------------------
    def connect_broker(
        self,
        credentials: Optional[BrokerCredentials] = None,
        will_topic: Optional[str] = None,
        will_payload: Optional[str] = None,
    ) -> bool:
        """Blocking handshake bounded by ``connect_timeout_s``."""
        if credentials is not None:
            self.credentials = credentials

        now = self._clock.monotonic()
        self._last_broker_attempt = now

        if not self._start_handshake(self.credentials, will_topic, will_payload, now):
            self._record_connect_failure(now)
            return False

        while self._handshake is not None:
            self._poll_handshake(self._clock.monotonic(), wait_s=0.1)

        return self.session.connected

    def _start_handshake(
        self,
        credentials: BrokerCredentials,
        will_topic: Optional[str],
        will_payload: Optional[str],
        now: float,
    ) -> bool:
        if self.active_kind is None:
            logger.warning("Cannot connect to MQTT: no active transport")
            return False

        self._teardown_session("new handshake")

        port = credentials.port
        use_tls = credentials.use_tls
        if use_tls and self.active_kind == LinkKind.WIRED:
            logger.warning(
                "TLS is not available over the wired transport, using plaintext port %s",
                self.config.plaintext_port,
            )
            use_tls = False
            port = self.config.plaintext_port

        will_topic = will_topic or self.topics.status
        will_payload = will_payload or StatusPayloads.OFFLINE

        client = self._client_factory()
        client.on_message = self._on_message

        started = client.begin_connect(
            credentials.host,
            port,
            username=credentials.username,
            password=credentials.password,
            use_tls=use_tls,
            will_topic=will_topic,
            will_payload=will_payload,
            bind_address=self._providers[self.active_kind].bind_address(),
        )
        if not started:
            client.disconnect()
            return False

        self._handshake = _PendingHandshake(
            client=client,
            deadline=now + self.config.connect_timeout_s,
            will_topic=will_topic,
            will_payload=will_payload,
        )
        return True

    def _poll_handshake(self, now: float, wait_s: float = 0.0) -> None:
        handshake = self._handshake
        if handshake is None:
            return

        state = handshake.client.poll_connect(wait_s)
        if state == HandshakeState.PENDING and now < handshake.deadline:
            return

        self._handshake = None

        if state != HandshakeState.CONNECTED:
            if state == HandshakeState.PENDING:
                logger.warning("MQTT connection TIMEOUT after %ss", self.config.connect_timeout_s)
            handshake.client.disconnect()
            self._record_connect_failure(now)
            return

        self._complete_session(handshake, now)

    def _complete_session(self, handshake: _PendingHandshake, now: float) -> None:
        client = handshake.client
        command_topic = self.topics.command

        subscribed: List[str] = []
        if client.subscribe(command_topic):
            subscribed.append(command_topic)

        client.publish(self.topics.status, StatusPayloads.ONLINE, retain=True)

        self._client = client
        self.session = BrokerSession(
            transport_kind=self.active_kind,
            connected=True,
            last_activity_time=now,
            subscribed_topics=subscribed,
            will_topic=handshake.will_topic,
            will_payload=handshake.will_payload,
        )
        self.connect_fail_count = 0
        self.publish_fail_count = 0

        logger.info("MQTT connected via %s", self.network_label)

    def _record_connect_failure(self, now: float) -> None:
        self.connect_fail_count += 1
        logger.warning(
            "MQTT connection failed (%s/%s)",
            self.connect_fail_count,
            self.config.max_connect_failures,
        )

        if (
            self.active_kind != LinkKind.WIRED
            or self.connect_fail_count < self.config.max_connect_failures
        ):
            return

        logger.warning("MQTT keeps failing over wired, switching to wireless for TLS")
        self.connect_fail_count = 0

        if self._refresh_link(LinkKind.WIRELESS, now):
            self.tls_escalated = True
            self._switch_transport(LinkKind.WIRELESS, now, "broker unreachable over wired")
        elif self._pending_link is None:
            self._begin_link(LinkKind.WIRELESS, now, "broker unreachable over wired", escalate_tls=True)

    def _teardown_session(self, reason: str) -> None:
        if self._handshake is not None:
            self._handshake.client.disconnect()
            self._handshake = None

        if self._client is not None:
            self._client.disconnect()
            self._client = None

        if self.session.connected:
            logger.info("MQTT session closed: %s", reason)

        self.session = BrokerSession()

    def disconnect(self) -> None:
        """Graceful shutdown: clear presence explicitly, the broker drops the will."""
        if self.session.connected and self._client is not None:
            self._client.publish(self.topics.status, StatusPayloads.OFFLINE, retain=True)
        self._teardown_session("shutdown")

    # ------------------------------------------------------------------
    # Traffic
    # ------------------------------------------------------------------
    def publish(self, topic: str, payload: str, *, retain: bool = False) -> bool:
        if not self.session.connected or self._client is None:
            return False

        if self._client.publish(topic, payload, retain=retain):
            self.publish_fail_count = 0
            self.session.last_activity_time = self._clock.monotonic()
            return True

        self.publish_fail_count += 1
        logger.warning(
            "MQTT publish failed (%s/%s) topic=%s",
            self.publish_fail_count,
            self.config.max_publish_failures,
            topic,
        )

        if self.publish_fail_count >= self.config.max_publish_failures:
            logger.error("Too many publish failures - forcing MQTT reconnect")
            self._teardown_session("publish failures")
            self.publish_fail_count = 0
            self._last_broker_attempt = None

        return False

    def _on_message(self, topic: str, payload: bytes) -> None:
        if self.session.connected:
            self.session.last_activity_time = self._clock.monotonic()

        if len(payload) >= self.config.max_payload_size:
            logger.warning("MQTT message too large (%s bytes), ignoring", len(payload))
            return

        if topic not in self.session.subscribed_topics:
            logger.debug("Ignoring message on unexpected topic %s", topic)
            return

        try:
            message = payload.decode("utf-8").strip()
        except UnicodeDecodeError:
            logger.warning("MQTT message on %s is not valid UTF-8, ignoring", topic)
            return

        logger.info("[MQTT] Received on %s: %s", topic, message)

        if self._message_handler is not None:
            self._message_handler(message)
