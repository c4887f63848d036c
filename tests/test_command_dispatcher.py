"""
Tests for command parsing and routing (pump_agent/application/command_dispatcher.py)
and the queued message handler in front of it.
"""
import json

import pytest

from pump_agent.application.command_dispatcher import CommandDispatcher
from pump_agent.core.exceptions import RestartRequested
from pump_agent.domain.actuator.enums import CommandSource
from pump_agent.domain.models.protection_config import ProtectionConfig
from pump_agent.domain.models.schedule_config import ScheduleConfig
from pump_agent.interfaces.handlers.command_message_handler import CommandMessageHandler


class RecordingSink:
    def __init__(self, pump_count: int = 1):
        self._pump_count = pump_count
        self.calls = []
        self.protection = {pump: ProtectionConfig() for pump in range(1, pump_count + 1)}
        self.schedule = ScheduleConfig()
        self.responses = []
        self.restart_on_update = False

    @property
    def pump_count(self) -> int:
        return self._pump_count

    def start(self, pump, source):
        self.calls.append(("start", pump, source))
        return True

    def stop(self, pump, source):
        self.calls.append(("stop", pump, source))
        return True

    def reset(self, pump, source):
        self.calls.append(("reset", pump, source))
        return True

    def request_status(self):
        self.calls.append(("status",))

    def get_protection(self, pump):
        return self.protection[pump]

    def apply_protection(self, pump, config):
        self.calls.append(("protection", pump))
        self.protection[pump] = config

    def get_schedule(self):
        return self.schedule

    def apply_schedule(self, config):
        self.calls.append(("schedule",))
        self.schedule = config

    def settings_snapshot(self):
        return {"type": "settings"}

    def publish_response(self, payload):
        self.responses.append(payload)
        return True

    def prepare_firmware_update(self):
        self.calls.append(("prepare_update",))

    def run_firmware_update(self, url):
        self.calls.append(("update", url))
        if self.restart_on_update:
            raise RestartRequested("firmware updated")
        return False


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(sink):
    return CommandDispatcher(sink)


def envelope(**fields) -> str:
    return json.dumps(fields)


@pytest.mark.parametrize(
    "message, call",
    [
        ("START", ("start", None, CommandSource.BROKER)),
        ("stop", ("stop", None, CommandSource.BROKER)),
        (" Reset ", ("reset", None, CommandSource.BROKER)),
        ("STATUS", ("status",)),
    ],
)
def test_plain_tokens_are_case_insensitive(dispatcher, sink, message, call):
    assert dispatcher.dispatch(message) is True
    assert sink.calls == [call]


@pytest.mark.parametrize("message", ["", "   ", "LAUNCH", "{broken json", '{"command": "EXPLODE"}', "[1, 2]"])
def test_unknown_or_malformed_commands_are_dropped(dispatcher, sink, message):
    assert dispatcher.dispatch(message) is False
    assert sink.calls == []


def test_source_is_passed_through(dispatcher, sink):
    dispatcher.dispatch("START", CommandSource.CONSOLE)

    assert sink.calls == [("start", None, CommandSource.CONSOLE)]


def test_envelope_start_defaults_to_pump_one_on_single_pump(dispatcher, sink):
    dispatcher.dispatch(envelope(command="START"))

    assert sink.calls == [("start", 1, CommandSource.BROKER)]


def test_multi_pump_envelope_requires_pump_field():
    """
    Tests START/STOP envelopes without a pump index are ignored on a multi-pump unit.

    Safety: A malformed command must not start every pump on the site.
    """
    sink = RecordingSink(pump_count=3)
    dispatcher = CommandDispatcher(sink)

    dispatcher.dispatch(envelope(command="START"))
    dispatcher.dispatch(envelope(command="STOP", pump=4))
    dispatcher.dispatch(envelope(command="START", pump=2))

    assert sink.calls == [("start", 2, CommandSource.BROKER)]


def test_all_pump_commands(dispatcher, sink):
    sink._pump_count = 3
    dispatcher.dispatch(envelope(command="START_ALL"))
    dispatcher.dispatch(envelope(command="stop_all"))
    dispatcher.dispatch(envelope(command="RESET_ALL"))
    dispatcher.dispatch(envelope(command="RESET"))

    assert [call[:2] for call in sink.calls] == [
        ("start", None),
        ("stop", None),
        ("reset", None),
        ("reset", None),
    ]


def test_set_thresholds_applies_valid_fields_only(dispatcher, sink):
    """
    Tests an out-of-range field is rejected while the valid ones are still applied.
    """
    dispatcher.dispatch(envelope(command="SET_THRESHOLDS", max_current=600, dry_current=3.5))

    assert sink.calls == [("protection", 1)]
    assert sink.protection[1].max_current == 120.0
    assert sink.protection[1].dry_current == 3.5


def test_set_thresholds_with_nothing_valid_changes_nothing(dispatcher, sink):
    dispatcher.dispatch(envelope(command="SET_THRESHOLDS", max_current="lots"))

    assert sink.calls == []


def test_set_protection_and_delays(dispatcher, sink):
    dispatcher.dispatch(envelope(command="SET_PROTECTION", overcurrent_enabled=False))
    dispatcher.dispatch(envelope(command="SET_DELAYS", overcurrent_delay_s=5, dryrun_delay_s=31))

    config = sink.protection[1]
    assert config.overcurrent_enabled is False
    assert config.dryrun_enabled is True
    assert config.overcurrent_delay_s == 5
    assert config.dryrun_delay_s == 0


def test_protection_fields_from_other_commands_are_ignored(dispatcher, sink):
    dispatcher.dispatch(envelope(command="SET_DELAYS", max_current=50))

    assert sink.calls == []
    assert sink.protection[1].max_current == 120.0


def test_set_schedule_updates_window(dispatcher, sink):
    dispatcher.dispatch(
        envelope(command="SET_SCHEDULE", enabled=True, start_hour=22, start_minute=30, end_hour=4, days=62)
    )

    assert sink.schedule.enabled is True
    assert sink.schedule.start_minutes == 22 * 60 + 30
    assert sink.schedule.end_hour == 4
    assert sink.schedule.days == 62


def test_enabling_schedule_disables_tariff_mode(dispatcher, sink):
    """
    Tests the simple schedule and tariff mode are mutually exclusive.

    Why: Two gating rules active at once would make the run window impossible to reason about.
    """
    sink.schedule = ScheduleConfig(tou_enabled=True)

    dispatcher.dispatch(envelope(command="SET_SCHEDULE", enabled=True))

    assert sink.schedule.enabled is True
    assert sink.schedule.tou_enabled is False


def test_enabling_tariff_mode_disables_schedule(dispatcher, sink):
    sink.schedule = ScheduleConfig(enabled=True)

    dispatcher.dispatch(envelope(command="SET_RURAFLEX", enabled=True))

    assert sink.schedule.tou_enabled is True
    assert sink.schedule.enabled is False


def test_get_settings_publishes_snapshot(dispatcher, sink):
    dispatcher.dispatch(envelope(command="GET_SETTINGS"))

    assert sink.responses == [{"type": "settings"}]


def test_firmware_update_requires_url(dispatcher, sink):
    dispatcher.dispatch(envelope(command="UPDATE_FIRMWARE"))
    dispatcher.dispatch(envelope(command="UPDATE_FIRMWARE", url="  "))

    assert sink.calls == []


def test_firmware_update_prepares_then_runs(dispatcher, sink):
    dispatcher.dispatch(envelope(command="UPDATE_FIRMWARE", url="https://updates.example/fw.bin"))

    assert sink.calls == [("prepare_update",), ("update", "https://updates.example/fw.bin")]


def test_handler_queues_until_drained(dispatcher, sink):
    """
    Tests broker messages are only dispatched when the control loop drains the queue.
    """
    handler = CommandMessageHandler(dispatcher)
    handler.on_broker_message("START")
    handler.on_console_line("STOP")

    assert sink.calls == []
    assert handler.drain() == 2
    assert sink.calls == [
        ("start", None, CommandSource.BROKER),
        ("stop", None, CommandSource.CONSOLE),
    ]
    assert handler.pending == 0


def test_handler_drops_oldest_when_full(dispatcher, sink):
    handler = CommandMessageHandler(dispatcher, max_pending=2)
    for message in ("START", "STOP", "RESET"):
        handler.on_broker_message(message)

    handler.drain()

    assert [call[0] for call in sink.calls] == ["stop", "reset"]


def test_handler_propagates_restart(dispatcher, sink):
    sink.restart_on_update = True
    handler = CommandMessageHandler(dispatcher)
    handler.on_broker_message(envelope(command="UPDATE_FIRMWARE", url="https://updates.example/fw.bin"))

    with pytest.raises(RestartRequested):
        handler.drain()


def test_handler_survives_sink_errors(dispatcher, sink, monkeypatch):
    def explode(pump, source):
        raise RuntimeError("relay driver fault")

    monkeypatch.setattr(sink, "start", explode)
    handler = CommandMessageHandler(dispatcher)
    handler.on_broker_message("START")
    handler.on_broker_message("STATUS")

    assert handler.drain() == 2
    assert sink.calls == [("status",)]
