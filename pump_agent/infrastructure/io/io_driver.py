import json
import logging
import os
from pathlib import Path
from typing import List, Protocol

logger = logging.getLogger(__name__)

ALL_OUTPUTS_OFF = 0xFF


class OutputDriver(Protocol):
    def write_outputs(self, value: int) -> None: ...


class InputDriver(Protocol):
    def read_inputs(self) -> int: ...


class MemoryIODriver:
    """In-process expander: remembers every output write and serves a settable input byte."""

    def __init__(self, inputs: int = 0):
        self.inputs = inputs
        self.outputs = ALL_OUTPUTS_OFF
        self.writes: List[int] = []

    def write_outputs(self, value: int) -> None:
        self.outputs = value & 0xFF
        self.writes.append(self.outputs)

    def read_inputs(self) -> int:
        return self.inputs & 0xFF


class FileIODriver:
    """I/O expander bridged through a JSON file ``{"di": int, "do": int}``.

    The board-support process owning the bus reads ``do`` and refreshes ``di``.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._outputs = ALL_OUTPUTS_OFF
        self._inputs = 0

    def _read(self) -> dict:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("I/O state file unreadable (%s): %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def read_inputs(self) -> int:
        value = self._read().get("di")
        if isinstance(value, int):
            self._inputs = value & 0xFF
        return self._inputs

    def write_outputs(self, value: int) -> None:
        self._outputs = value & 0xFF
        data = self._read()
        data["do"] = self._outputs

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(self.path)
