import errno
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class PersistentStore:
    """Namespaced key/value store backed by a single JSON document.

    Every ``put``/``put_many`` is written through to disk (fsync + atomic
    replace) before returning.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._data: Optional[Dict[str, Dict[str, Any]]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self._data is not None:
            return self._data

        if not self._path.exists():
            logger.info(f"Persistent store not found, starting empty: {self._path}")
            self._data = {}
            return self._data

        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError:
            logger.exception("Persistent store is corrupted, starting empty: %s", self._path)
            raw = {}

        if not isinstance(raw, dict):
            logger.error("Persistent store root must be an object, ignoring: %s", self._path)
            raw = {}

        self._data = {
            str(namespace): dict(values)
            for namespace, values in raw.items()
            if isinstance(values, dict)
        }
        logger.info(f"Loaded persistent store: {self._path}")
        return self._data

    def get(self, namespace: str, key: str, default: Any = None) -> Any:
        return self._load().get(namespace, {}).get(key, default)

    def namespace(self, namespace: str) -> Dict[str, Any]:
        return dict(self._load().get(namespace, {}))

    def put(self, namespace: str, key: str, value: Any) -> None:
        self.put_many(namespace, {key: value})

    def put_many(self, namespace: str, values: Dict[str, Any]) -> None:
        data = self._load()
        data.setdefault(namespace, {}).update(values)
        self._save(data)

    def _save(self, data: Dict[str, Dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        self._write_json_with_fallback(data=data, tmp_path=tmp_path)

    def _write_json_with_fallback(self, *, data: dict, tmp_path: Path) -> None:
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        try:
            tmp_path.replace(self._path)
            logger.debug("Persistent store saved (atomic write)")
            return
        except OSError as exc:
            if exc.errno not in {errno.EBUSY, errno.EXDEV, errno.EPERM}:
                raise

            logger.warning(
                "Atomic replace failed for persistent store (%s). "
                "Falling back to in-place write: %s",
                self._path,
                exc,
            )

        with self._path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            logger.debug("Failed to remove temp store file: %s", tmp_path)

        logger.info("Persistent store saved (in-place write)")
