import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from pump_agent.domain.actuator.enums import CommandSource
from pump_agent.domain.commands.envelopes import (
    PROTECTION_FIELDS,
    SCHEDULE_FIELDS,
    CommandEnvelope,
    EnvelopeCommand,
    PlainCommand,
)
from pump_agent.domain.interfaces import CommandSink

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_BOOL = TypeAdapter(bool)


class CommandDispatcher:
    """Routes inbound command strings to the command sink.

    Plain tokens are tried first; anything else is parsed as a JSON
    envelope. Unknown or malformed commands are logged and dropped.
    """

    def __init__(self, sink: CommandSink):
        self._sink = sink
        self._handlers: Dict[EnvelopeCommand, Callable[[CommandEnvelope, CommandSource], None]] = {
            EnvelopeCommand.START: self._handle_start,
            EnvelopeCommand.STOP: self._handle_stop,
            EnvelopeCommand.RESET: self._handle_reset,
            EnvelopeCommand.STATUS: self._handle_status,
            EnvelopeCommand.START_ALL: self._handle_start_all,
            EnvelopeCommand.STOP_ALL: self._handle_stop_all,
            EnvelopeCommand.RESET_ALL: self._handle_reset_all,
            EnvelopeCommand.SET_PROTECTION: self._handle_protection,
            EnvelopeCommand.SET_THRESHOLDS: self._handle_protection,
            EnvelopeCommand.SET_DELAYS: self._handle_protection,
            EnvelopeCommand.SET_SCHEDULE: self._handle_schedule,
            EnvelopeCommand.SET_RURAFLEX: self._handle_schedule,
            EnvelopeCommand.GET_SETTINGS: self._handle_get_settings,
            EnvelopeCommand.UPDATE_FIRMWARE: self._handle_firmware_update,
        }

    def dispatch(self, message: str, source: CommandSource = CommandSource.BROKER) -> bool:
        text = message.strip()
        if not text:
            return False

        plain = self._plain_command(text)
        if plain is not None:
            self._dispatch_plain(plain, source)
            return True

        envelope = self._parse_envelope(text)
        if envelope is None:
            logger.warning("Unrecognized command: %s", text)
            return False

        command = envelope.known_command()
        if command is None:
            logger.warning("Unrecognized envelope command: %s", envelope.command)
            return False

        logger.info("Dispatching %s from %s", command.value, source.value)
        self._handlers[command](envelope, source)
        return True

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------
    @staticmethod
    def _plain_command(text: str) -> Optional[PlainCommand]:
        try:
            return PlainCommand(text.upper())
        except ValueError:
            return None

    @staticmethod
    def _parse_envelope(text: str) -> Optional[CommandEnvelope]:
        if not text.startswith("{"):
            return None
        try:
            return CommandEnvelope.model_validate_json(text)
        except ValidationError as exc:
            logger.warning("Malformed command envelope: %s", exc.errors()[0].get("msg"))
            return None

    def _dispatch_plain(self, command: PlainCommand, source: CommandSource) -> None:
        if command == PlainCommand.START:
            self._sink.start(None, source)
        elif command == PlainCommand.STOP:
            self._sink.stop(None, source)
        elif command == PlainCommand.RESET:
            self._sink.reset(None, source)
        elif command == PlainCommand.STATUS:
            self._sink.request_status()

    def _target_pump(self, envelope: CommandEnvelope) -> Optional[int]:
        """1-based pump index for per-pump commands, ``None`` when the envelope is unusable."""
        pump = envelope.pump
        count = self._sink.pump_count

        if pump is None:
            if count == 1:
                return 1
            logger.warning("%s: missing 'pump' (1-%s)", envelope.command, count)
            return None

        if not 1 <= pump <= count:
            logger.warning("%s: pump %s out of range (1-%s)", envelope.command, pump, count)
            return None

        return pump

    # ------------------------------------------------------------------
    # Actuator commands
    # ------------------------------------------------------------------
    def _handle_start(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        pump = self._target_pump(envelope)
        if pump is not None:
            self._sink.start(pump, source)

    def _handle_stop(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        pump = self._target_pump(envelope)
        if pump is not None:
            self._sink.stop(pump, source)

    def _handle_reset(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        if envelope.pump is None:
            self._sink.reset(None, source)
            return
        pump = self._target_pump(envelope)
        if pump is not None:
            self._sink.reset(pump, source)

    def _handle_status(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        self._sink.request_status()

    def _handle_start_all(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        self._sink.start(None, source)

    def _handle_stop_all(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        self._sink.stop(None, source)

    def _handle_reset_all(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        self._sink.reset(None, source)

    # ------------------------------------------------------------------
    # Configuration commands
    # ------------------------------------------------------------------
    @staticmethod
    def _merge_fields(
        model: ModelT,
        mapping: Dict[str, str],
        fields: Dict[str, Any],
        label: str,
    ) -> Tuple[ModelT, List[str]]:
        """Apply each recognised field on its own; a rejected field leaves the rest intact."""
        accepted: List[str] = []

        for key, attr in mapping.items():
            if key not in fields:
                continue

            candidate = model.model_dump()
            candidate[attr] = fields[key]
            try:
                model = type(model).model_validate(candidate)
            except ValidationError as exc:
                logger.warning(
                    "%s: rejected %s=%r (%s)",
                    label,
                    key,
                    fields[key],
                    exc.errors()[0].get("msg"),
                )
                continue

            accepted.append(key)

        return model, accepted

    def _handle_protection(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        command = EnvelopeCommand(envelope.command.strip().upper())
        pump = self._target_pump(envelope)
        if pump is None:
            return

        current = self._sink.get_protection(pump)
        updated, accepted = self._merge_fields(
            current,
            PROTECTION_FIELDS[command],
            envelope.fields,
            f"{command.value} pump {pump}",
        )

        if not accepted:
            logger.warning("%s pump %s: no valid fields, nothing changed", command.value, pump)
            return

        self._sink.apply_protection(pump, updated)
        logger.info("Pump %s: %s applied (%s)", pump, command.value, ", ".join(accepted))

    def _handle_schedule(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        command = EnvelopeCommand(envelope.command.strip().upper())
        fields = envelope.fields
        current = self._sink.get_schedule()

        if command == EnvelopeCommand.SET_SCHEDULE and current.tou_enabled and self._requests_enable(fields):
            logger.info("Simple schedule enabled, disabling tariff mode")
            current = current.model_copy(update={"tou_enabled": False})

        updated, accepted = self._merge_fields(
            current,
            SCHEDULE_FIELDS[command],
            fields,
            command.value,
        )

        if not accepted:
            logger.warning("%s: no valid fields, nothing changed", command.value)
            return

        if updated.tou_enabled and not current.tou_enabled and current.enabled:
            logger.info("Tariff mode enabled, disabling simple schedule")

        self._sink.apply_schedule(updated)
        logger.info("%s applied (%s)", command.value, ", ".join(accepted))

    @staticmethod
    def _requests_enable(fields: Dict[str, Any]) -> bool:
        if "enabled" not in fields:
            return False
        try:
            return _BOOL.validate_python(fields["enabled"])
        except ValidationError:
            return False

    def _handle_get_settings(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        self._sink.publish_response(self._sink.settings_snapshot())
        logger.info("Settings sent")

    # ------------------------------------------------------------------
    # Firmware
    # ------------------------------------------------------------------
    def _handle_firmware_update(self, envelope: CommandEnvelope, source: CommandSource) -> None:
        url = (envelope.url or "").strip()
        if not url:
            logger.warning("UPDATE_FIRMWARE command missing 'url' parameter")
            return

        logger.info("Remote firmware update requested: %s", url)
        self._sink.prepare_firmware_update()
        self._sink.run_firmware_update(url)
