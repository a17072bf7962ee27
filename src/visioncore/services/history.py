"""Key/value persistence and the capped per-tool generation history."""

from pathlib import Path
from typing import Optional, Protocol

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from visioncore.models.generation import GenerationResult, JobKind

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_CAP = 10

HISTORY_KEYS: dict[JobKind, str] = {
    JobKind.LISTING: "HISTORY_LISTING",
    JobKind.STUDIO: "HISTORY_STUDIO",
    JobKind.INFLUENCER: "HISTORY_UGC",
    JobKind.FASHION: "HISTORY_FASHION",
    JobKind.AD: "HISTORY_AD",
    JobKind.VIDEO: "HISTORY_VIDEO",
    JobKind.RELOCATE: "HISTORY_RELOCATE",
}

_results_adapter = TypeAdapter(list[GenerationResult])


class KeyValueStore(Protocol):
    """Durable string key/value storage."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store, used by tests and one-off runs."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore:
    """One file per key under a directory (``<directory>/<key>.json``)."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class HistoryStore:
    """Newest-first list of recent results, capped and persisted after each change.

    Storage is best effort: a failed write is logged and the in-memory list is
    kept, and an unreadable stored value loads as an empty history.
    """

    def __init__(self, store: KeyValueStore, key: str, cap: int = DEFAULT_HISTORY_CAP):
        if cap < 1:
            raise ValueError("History cap must be at least 1")
        self.store = store
        self.key = key
        self.cap = cap
        self._items = self._load()

    @classmethod
    def for_kind(
        cls, store: KeyValueStore, kind: JobKind, cap: int = DEFAULT_HISTORY_CAP
    ) -> "HistoryStore":
        return cls(store, HISTORY_KEYS[kind], cap)

    @property
    def items(self) -> list[GenerationResult]:
        return list(self._items)

    def _load(self) -> list[GenerationResult]:
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            return _results_adapter.validate_json(raw)[: self.cap]
        except PydanticValidationError as e:
            logger.warning("history.load.failed", key=self.key, error=str(e))
            return []

    def _save(self) -> None:
        try:
            self.store.set(self.key, _results_adapter.dump_json(self._items).decode("utf-8"))
        except OSError as e:
            logger.warning("history.save.failed", key=self.key, error=str(e))

    def add(self, result: GenerationResult) -> None:
        self._items = [result, *self._items][: self.cap]
        self._save()

    def clear(self) -> None:
        self._items = []
        try:
            self.store.remove(self.key)
        except OSError as e:
            logger.warning("history.clear.failed", key=self.key, error=str(e))
