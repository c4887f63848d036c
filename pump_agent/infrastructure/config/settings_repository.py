import logging
from typing import Optional

from pydantic import ValidationError

from pump_agent.core.config import Settings
from pump_agent.domain.models.broker_credentials import BrokerCredentials
from pump_agent.domain.models.protection_config import ProtectionConfig
from pump_agent.domain.models.schedule_config import ScheduleConfig
from pump_agent.infrastructure.storage.persistent_store import PersistentStore

logger = logging.getLogger(__name__)


class StoreNamespaces:
    PROTECTION = "protection"
    SCHEDULE = "schedule"
    RURAFLEX = "ruraflex"
    MQTT = "mqtt"

    @staticmethod
    def pump_protection(pump: int) -> str:
        return f"prot_p{pump}"


class SettingsRepository:
    """Maps the domain config models onto persistent store namespaces."""

    def __init__(self, store: PersistentStore, *, multi_pump: bool = False):
        self._store = store
        self._multi_pump = multi_pump

    def _protection_namespace(self, pump: int) -> str:
        if self._multi_pump:
            return StoreNamespaces.pump_protection(pump)
        return StoreNamespaces.PROTECTION

    # ------------------------------------------------------------------
    # Protection
    # ------------------------------------------------------------------
    def load_protection(self, pump: int = 1) -> ProtectionConfig:
        namespace = self._protection_namespace(pump)
        raw = self._store.namespace(namespace)
        defaults = ProtectionConfig()

        try:
            config = ProtectionConfig(
                overcurrent_enabled=raw.get("overcurrent", defaults.overcurrent_enabled),
                dryrun_enabled=raw.get("dryrun", defaults.dryrun_enabled),
                max_current=raw.get("max_current", defaults.max_current),
                dry_current=raw.get("dry_current", defaults.dry_current),
                overcurrent_delay_s=raw.get("oc_delay", defaults.overcurrent_delay_s),
                dryrun_delay_s=raw.get("dr_delay", defaults.dryrun_delay_s),
            )
        except ValidationError:
            logger.exception("Stored protection config in '%s' is invalid, using defaults", namespace)
            config = defaults

        logger.info(
            "Protection config loaded [%s]: max=%.1fA, dry=%.1fA, oc_delay=%ss, dr_delay=%ss",
            namespace,
            config.max_current,
            config.dry_current,
            config.overcurrent_delay_s,
            config.dryrun_delay_s,
        )
        return config

    def save_protection(self, config: ProtectionConfig, pump: int = 1) -> None:
        namespace = self._protection_namespace(pump)
        self._store.put_many(
            namespace,
            {
                "overcurrent": config.overcurrent_enabled,
                "dryrun": config.dryrun_enabled,
                "max_current": config.max_current,
                "dry_current": config.dry_current,
                "oc_delay": config.overcurrent_delay_s,
                "dr_delay": config.dryrun_delay_s,
            },
        )
        logger.info(
            "Protection config saved [%s]: max=%.1fA, dry=%.1fA, oc_delay=%ss, dr_delay=%ss",
            namespace,
            config.max_current,
            config.dry_current,
            config.overcurrent_delay_s,
            config.dryrun_delay_s,
        )

    # ------------------------------------------------------------------
    # Schedule + tariff flag
    # ------------------------------------------------------------------
    def load_schedule(self) -> ScheduleConfig:
        raw = self._store.namespace(StoreNamespaces.SCHEDULE)
        tou_enabled = self._store.get(StoreNamespaces.RURAFLEX, "enabled", False)
        defaults = ScheduleConfig()

        try:
            config = ScheduleConfig(
                enabled=raw.get("enabled", defaults.enabled),
                start_hour=raw.get("startH", defaults.start_hour),
                start_minute=raw.get("startM", defaults.start_minute),
                end_hour=raw.get("endH", defaults.end_hour),
                end_minute=raw.get("endM", defaults.end_minute),
                days=raw.get("days", defaults.days),
                tou_enabled=tou_enabled,
            )
        except ValidationError:
            logger.exception("Stored schedule config is invalid, using defaults")
            config = defaults

        logger.info("Schedule config loaded: %s", config.model_dump())
        return config

    def save_schedule(self, config: ScheduleConfig) -> None:
        self._store.put_many(
            StoreNamespaces.SCHEDULE,
            {
                "enabled": config.enabled,
                "startH": config.start_hour,
                "startM": config.start_minute,
                "endH": config.end_hour,
                "endM": config.end_minute,
                "days": config.days,
            },
        )
        self._store.put(StoreNamespaces.RURAFLEX, "enabled", config.tou_enabled)
        logger.info("Schedule config saved: %s", config.model_dump())

    # ------------------------------------------------------------------
    # Broker credentials
    # ------------------------------------------------------------------
    def load_broker_credentials(self, settings: Settings) -> BrokerCredentials:
        raw = self._store.namespace(StoreNamespaces.MQTT)

        host: Optional[str] = raw.get("host") or settings.MQTT_HOST
        username = raw.get("user") or settings.MQTT_USER
        password = raw.get("pass", "") if raw.get("user") else settings.MQTT_PASSWORD

        try:
            credentials = BrokerCredentials(
                host=host,
                port=raw.get("port", settings.MQTT_PORT),
                username=username,
                password=password,
                use_tls=raw.get("tls", settings.MQTT_USE_TLS),
            )
        except ValidationError:
            logger.exception("Stored MQTT config is invalid, using settings defaults")
            credentials = BrokerCredentials(
                host=settings.MQTT_HOST,
                port=settings.MQTT_PORT,
                username=settings.MQTT_USER,
                password=settings.MQTT_PASSWORD,
                use_tls=settings.MQTT_USE_TLS,
            )

        logger.info(
            "MQTT config loaded: host=%s:%s user=%s tls=%s",
            credentials.host,
            credentials.port,
            credentials.username,
            "yes" if credentials.use_tls else "no",
        )
        return credentials
