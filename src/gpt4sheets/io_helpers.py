from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def _safe_write_text(path: Path, content: str) -> bool:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(path)
    except OSError:
        return False
    return True


def _safe_write_json(path: Path, payload: dict[str, Any]) -> bool:
    try:
        content = json.dumps(payload, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return False
    return _safe_write_text(path, content)


def _safe_read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return loaded if isinstance(loaded, dict) else None
