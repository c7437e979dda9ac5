from __future__ import annotations

from pathlib import Path

from gpt4sheets.config import get_settings_path
from gpt4sheets.io_helpers import _safe_read_json, _safe_write_json


class MemoryPropertyStore:
    """Flat string key-value store held in memory."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str, default: str | None = "") -> str | None:
        value = self._data.get(key)
        return value if value is not None else default

    def set(self, key: str, value: str) -> bool:
        self._data[key] = str(value)
        return self._persist()

    def delete(self, key: str) -> bool:
        self._data.pop(key, None)
        return self._persist()

    def all(self) -> dict[str, str]:
        return dict(self._data)

    def _persist(self) -> bool:
        return True


class PropertyStore(MemoryPropertyStore):
    """Property store persisted as a JSON object on disk."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else get_settings_path()
        loaded = _safe_read_json(self.path) or {}
        super().__init__({str(k): str(v) for k, v in loaded.items() if v is not None})

    def _persist(self) -> bool:
        return _safe_write_json(self.path, self._data)
