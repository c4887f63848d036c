# pump_agent/main.py

import asyncio
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parent.parent))

from pump_agent.application.device_controller import DeviceController
from pump_agent.application.firmware_update_service import FirmwareUpdateService
from pump_agent.core.clock import SystemClock
from pump_agent.core.config import Settings, settings
from pump_agent.core.connectivity import ConnectivityConfig, ConnectivityManager
from pump_agent.core.device_context import DeviceContext
from pump_agent.core.exceptions import NetworkUnavailableError, RestartRequested
from pump_agent.core.logging_config import configure_logging, logger
from pump_agent.core.mqtt_client import MqttBrokerClient
from pump_agent.core.mqtt_topics import StatusPayloads
from pump_agent.domain.actuator.actuator import ControlParameters
from pump_agent.domain.network.network_link import LinkKind
from pump_agent.infrastructure.config.settings_repository import SettingsRepository
from pump_agent.infrastructure.firmware.flash_sink import FileFlashSink
from pump_agent.infrastructure.io.board_layout import BoardLayout
from pump_agent.infrastructure.io.io_driver import FileIODriver
from pump_agent.infrastructure.io.output_register import OutputRegister
from pump_agent.infrastructure.io.panel_inputs import PanelInputs
from pump_agent.infrastructure.network.transport import InterfaceTransport
from pump_agent.infrastructure.notifications.webhook_notifier import WebhookNotifier
from pump_agent.infrastructure.sensors.sensor_feed import JsonFileSensorSource, SensorFeed
from pump_agent.infrastructure.storage.persistent_store import PersistentStore

# Any non-zero exit makes the service supervisor restart the agent.
RESTART_EXIT_CODE = 3


def control_parameters(config: Settings) -> ControlParameters:
    return ControlParameters(
        tick_interval_s=config.CONTROL_TICK_S,
        run_threshold=config.RUN_THRESHOLD_A,
        hysteresis=config.HYSTERESIS_A,
        debounce_count=config.STATE_DEBOUNCE_COUNT,
        start_timeout_s=config.START_TIMEOUT_S,
        fault_auto_reset_s=config.FAULT_AUTO_RESET_S,
        sensor_max_failures=config.SENSOR_MAX_FAILURES,
    )


def connectivity_config(config: Settings) -> ConnectivityConfig:
    return ConnectivityConfig(
        connect_timeout_s=config.MQTT_CONNECT_TIMEOUT_S,
        retry_interval_s=config.MQTT_RETRY_INTERVAL_S,
        stale_timeout_s=config.MQTT_STALE_TIMEOUT_S,
        max_publish_failures=config.MQTT_MAX_PUBLISH_FAILURES,
        max_connect_failures=config.MQTT_MAX_CONNECT_FAILURES,
        plaintext_port=config.MQTT_PLAINTEXT_PORT,
        max_payload_size=config.MQTT_MAX_PAYLOAD_SIZE,
        link_connect_timeout_s=config.LINK_CONNECT_TIMEOUT_S,
        wired_reprobe_interval_s=config.WIRED_REPROBE_INTERVAL_S,
        network_retry_interval_s=config.NETWORK_RETRY_INTERVAL_S,
    )


def build_controller(config: Settings, clock: SystemClock) -> DeviceController:
    context = DeviceContext.create(config, boot_time=clock.monotonic())

    store = PersistentStore(config.resolve_path(config.STORE_FILE))
    repository = SettingsRepository(store, multi_pump=config.PUMP_COUNT > 1)
    credentials = repository.load_broker_credentials(config)

    connectivity = ConnectivityManager(
        InterfaceTransport(LinkKind.WIRED, config.WIRED_INTERFACE),
        InterfaceTransport(LinkKind.WIRELESS, config.WIRELESS_INTERFACE),
        lambda: MqttBrokerClient(context.device_id, keepalive_s=config.MQTT_KEEPALIVE_S),
        credentials,
        context.topics,
        clock,
        connectivity_config(config),
    )

    layout = BoardLayout.for_pumps(config.PUMP_COUNT)
    io_driver = FileIODriver(config.resolve_path(config.IO_STATE_FILE))

    notifier = WebhookNotifier(
        config.NOTIFICATION_WEBHOOK_URL,
        context.device_id,
        config.resolve_path(config.NOTIFICATION_QUEUE_FILE),
    )

    firmware = FirmwareUpdateService(
        FileFlashSink(
            config.resolve_path(config.FIRMWARE_STAGING_FILE),
            config.resolve_path(config.FIRMWARE_IMAGE_FILE),
        ),
        chunk_size=config.FIRMWARE_CHUNK_SIZE,
        timeout_s=config.HTTP_TIMEOUT_S,
    )

    return DeviceController(
        context=context,
        clock=clock,
        connectivity=connectivity,
        repository=repository,
        sensor_feed=SensorFeed(
            JsonFileSensorSource(config.resolve_path(config.SENSOR_FILE)),
            max_failures=config.SENSOR_MAX_FAILURES,
        ),
        panel=PanelInputs(
            io_driver,
            feedback_bits=layout.feedback_bits,
            has_buttons=layout.has_buttons,
            debounce_s=config.BUTTON_DEBOUNCE_S,
        ),
        outputs=OutputRegister(
            io_driver,
            contactor_channels=layout.contactor_channels,
            alarm_channels=layout.alarm_channels,
        ),
        firmware=firmware,
        parameters=control_parameters(config),
        pump_count=config.PUMP_COUNT,
        telemetry_interval_s=config.TELEMETRY_INTERVAL_S,
        fault_observer=notifier,
    )


def attach_console(controller: DeviceController) -> None:
    if not sys.stdin.isatty():
        return

    def _read_line() -> None:
        line = sys.stdin.readline()
        if line:
            controller.commands.on_console_line(line)

    asyncio.get_running_loop().add_reader(sys.stdin.fileno(), _read_line)
    logger.info("Console commands enabled")


async def run_loop(controller: DeviceController, idle_s: float) -> None:
    while True:
        controller.loop_once()
        await asyncio.sleep(idle_s)


async def main() -> int:
    configure_logging()
    logger.info("=== %s v%s ===", settings.FIRMWARE_NAME, settings.FIRMWARE_VERSION)

    clock = SystemClock(settings.UTC_OFFSET_HOURS)
    controller = build_controller(settings, clock)
    connectivity = controller.connectivity

    try:
        connectivity.select_transport()
    except NetworkUnavailableError:
        logger.critical("No network connection available at boot, restarting")
        return RESTART_EXIT_CODE

    if not connectivity.connect_broker(will_topic=controller.context.topics.status, will_payload=StatusPayloads.OFFLINE):
        logger.warning("Initial MQTT connection failed, will retry in the main loop")

    controller.boot()
    attach_console(controller)
    logger.info("🚀 Pump agent started")

    try:
        await run_loop(controller, settings.LOOP_IDLE_S)

    except RestartRequested as exc:
        logger.warning("Restart requested: %s", exc.reason)
        return RESTART_EXIT_CODE

    except asyncio.CancelledError:
        pass

    finally:
        controller.control.stop_all()
        connectivity.disconnect()
        if isinstance(controller.fault_observer, WebhookNotifier):
            controller.fault_observer.close()
        logger.info("🛑 Pump agent stopped, all contactors released.")

    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("🛑 Pump agent stopping due to keyboard interrupt.")
