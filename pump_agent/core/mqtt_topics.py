from dataclasses import dataclass

from pump_agent.core.config import settings


class StatusPayloads:
    ONLINE = "online"
    OFFLINE = "offline"
    UPDATING = "updating"


class MqttChannels:
    TELEMETRY = "telemetry"
    COMMAND = "command"
    STATUS = "status"


@dataclass(frozen=True)
class DeviceTopics:
    telemetry: str
    command: str
    status: str


class MqttTopics:

    @staticmethod
    def device_topic(device_id: str, channel: str) -> str:
        return (
            f"{settings.TOPIC_PREFIX}/"
            f"{device_id}/"
            f"{channel}"
        )

    @classmethod
    def for_device(cls, device_id: str) -> DeviceTopics:
        return DeviceTopics(
            telemetry=cls.device_topic(device_id, MqttChannels.TELEMETRY),
            command=cls.device_topic(device_id, MqttChannels.COMMAND),
            status=cls.device_topic(device_id, MqttChannels.STATUS),
        )
