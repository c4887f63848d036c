import logging
import ssl
from enum import Enum
from typing import Callable, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, bytes], None]


class HandshakeState(str, Enum):
    PENDING = "PENDING"
    CONNECTED = "CONNECTED"
    FAILED = "FAILED"


class MqttBrokerClient:
    """Thin single-threaded wrapper around a paho client.

    Nothing here starts paho's network thread: the owner calls ``loop()`` from the
    control loop, which keeps all callbacks on the caller's thread.
    """

    def __init__(self, client_id: str, *, keepalive_s: int = 30):
        self.client_id = client_id
        self.keepalive_s = keepalive_s
        self.on_message: Optional[MessageCallback] = None

        self._connected = False
        self._failed = False
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
        )
        self._client.on_connect = self._handle_connect
        self._client.on_disconnect = self._handle_disconnect
        self._client.on_message = self._handle_message

    @property
    def is_connected(self) -> bool:
        return self._connected

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
    ) -> bool:
        """Open the socket and send CONNECT; CONNACK is collected by ``poll_connect``."""
        if username:
            self._client.username_pw_set(username, password or None)

        self._client.will_set(will_topic, will_payload, qos=0, retain=True)

        if use_tls:
            # Field units have no CA bundle management; the link is encrypted but unverified.
            self._client.tls_set(cert_reqs=ssl.CERT_NONE)
            self._client.tls_insecure_set(True)

        logger.info(
            "Connecting to MQTT: %s:%s (TLS: %s, bind=%s)",
            host,
            port,
            "yes" if use_tls else "no",
            bind_address or "-",
        )

        self._connected = False
        self._failed = False
        try:
            self._client.connect(
                host,
                port,
                keepalive=self.keepalive_s,
                bind_address=bind_address or "",
            )
        except (OSError, ValueError) as exc:
            logger.warning("MQTT socket connect failed: %s", exc)
            self._failed = True
            return False
        return True

    def poll_connect(self, wait_s: float = 0.0) -> HandshakeState:
        if self._connected:
            return HandshakeState.CONNECTED
        if self._failed:
            return HandshakeState.FAILED

        rc = self._client.loop(timeout=wait_s)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("MQTT handshake loop failed rc=%s", rc)
            self._failed = True

        if self._connected:
            return HandshakeState.CONNECTED
        if self._failed:
            return HandshakeState.FAILED
        return HandshakeState.PENDING

    def subscribe(self, topic: str) -> bool:
        rc, _mid = self._client.subscribe(topic, qos=0)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error("MQTT subscribe failed topic=%s rc=%s", topic, rc)
            return False
        logger.info("[MQTT] Subscribed to topic: %s", topic)
        return True

    def publish(self, topic: str, payload: str, *, retain: bool = False) -> bool:
        if not self._connected:
            return False

        info = self._client.publish(topic, payload, qos=0, retain=retain)
        return info.rc == mqtt.MQTT_ERR_SUCCESS

    def loop(self) -> bool:
        if not self._connected:
            return False

        rc = self._client.loop(timeout=0)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("MQTT network loop error rc=%s", rc)
            self._connected = False
        return self._connected

    def disconnect(self) -> None:
        was_connected = self._connected
        self._connected = False
        self._client.disconnect()
        if was_connected:
            logger.info("MQTT connection closed.")

    # ------------------------------------------------------------------
    # paho callbacks (invoked from loop() on the caller's thread)
    # ------------------------------------------------------------------
    def _handle_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.warning("MQTT broker refused connection: %s", reason_code)
            self._failed = True
            return
        self._connected = True

    def _handle_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        if self._connected:
            logger.warning("MQTT disconnected: %s", reason_code)
        self._connected = False

    def _handle_message(self, client, userdata, message):
        if self.on_message is not None:
            self.on_message(message.topic, message.payload)
