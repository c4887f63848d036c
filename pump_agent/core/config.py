from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    BASE_DIR: Path = Path(__file__).resolve().parents[2]

    DEVICE_ID: Optional[str] = Field(None, description="Device id, derived from MAC when empty")
    TOPIC_PREFIX: str = "fieldlink"

    FIRMWARE_NAME: str = "Pump Agent"
    FIRMWARE_VERSION: str = "2.10.0"
    HARDWARE_TYPE: str = "PUMP_AGENT"

    # Broker defaults, overridden by the persisted "mqtt" namespace.
    MQTT_HOST: str = "localhost"
    MQTT_PORT: int = 8883
    MQTT_USER: str = ""
    MQTT_PASSWORD: str = ""
    MQTT_USE_TLS: bool = True
    MQTT_PLAINTEXT_PORT: int = 1883
    MQTT_KEEPALIVE_S: int = 30
    MQTT_CONNECT_TIMEOUT_S: float = 10.0
    MQTT_RETRY_INTERVAL_S: float = 5.0
    MQTT_STALE_TIMEOUT_S: float = 90.0
    MQTT_MAX_PUBLISH_FAILURES: int = 3
    MQTT_MAX_CONNECT_FAILURES: int = 3
    MQTT_MAX_PAYLOAD_SIZE: int = 512

    WIRED_INTERFACE: str = "eth0"
    WIRELESS_INTERFACE: str = "wlan0"
    LINK_CONNECT_TIMEOUT_S: float = 10.0
    WIRED_REPROBE_INTERVAL_S: float = 30.0
    NETWORK_RETRY_INTERVAL_S: float = 15.0

    CONTROL_TICK_S: float = 0.5
    TELEMETRY_INTERVAL_S: float = 2.0
    LOOP_IDLE_S: float = 0.01

    PUMP_COUNT: int = Field(1, ge=1, le=3)
    RUN_THRESHOLD_A: float = 5.0
    HYSTERESIS_A: float = 1.0
    STATE_DEBOUNCE_COUNT: int = 3
    START_TIMEOUT_S: float = 10.0
    FAULT_AUTO_RESET_S: float = 0.0
    SENSOR_MAX_FAILURES: int = 5
    BUTTON_DEBOUNCE_S: float = 0.05

    UTC_OFFSET_HOURS: float = 2.0

    STORE_FILE: str = "store.json"
    SENSOR_FILE: str = "sensors.json"
    IO_STATE_FILE: str = "io.json"
    FIRMWARE_STAGING_FILE: str = "firmware.bin"
    FIRMWARE_IMAGE_FILE: str = "firmware.img"
    FIRMWARE_CHUNK_SIZE: int = 1024

    NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    NOTIFICATION_QUEUE_FILE: str = "logs/pending_notifications.jsonl"
    HTTP_TIMEOUT_S: float = 30.0

    LOG_DIR: str = Field("logs")

    def resolve_path(self, value: str) -> Path:
        path = Path(value)
        if not path.is_absolute():
            path = self.BASE_DIR / path
        return path


settings = Settings()
