"""Storage for user-dragged positions."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

from hub_mirror.layout.geometry import LayoutPosition

logger = logging.getLogger(__name__)


class PositionStore(Protocol):
    def load(self) -> dict[str, LayoutPosition]: ...

    def save(self, entity_id: str, position: LayoutPosition) -> None: ...

    def clear(self) -> None: ...


class InMemoryPositionStore:
    def __init__(self, initial: dict[str, LayoutPosition] | None = None) -> None:
        self._items: dict[str, LayoutPosition] = dict(initial or {})

    def load(self) -> dict[str, LayoutPosition]:
        return dict(self._items)

    def save(self, entity_id: str, position: LayoutPosition) -> None:
        self._items[entity_id] = position

    def clear(self) -> None:
        self._items.clear()


class JsonFilePositionStore:
    """Manual positions in one JSON object: `{"<id>": {"x": .., "y": .., "z": ..}}`.

    A missing file is an empty store. An unreadable file or malformed entry
    is logged and skipped rather than blocking startup.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, LayoutPosition]:
        raw = self._read()
        positions: dict[str, LayoutPosition] = {}
        for entity_id, entry in raw.items():
            position = _parse_entry(entry)
            if position is None:
                logger.warning("layout event=bad_saved_position id=%s path=%s", entity_id, self.path)
                continue
            positions[entity_id] = position
        return positions

    def save(self, entity_id: str, position: LayoutPosition) -> None:
        raw = self._read()
        raw[entity_id] = position.as_dict()
        self._write(raw)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("layout event=store_unreadable path=%s error=%s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("layout event=store_unreadable path=%s error=not an object", self.path)
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)


def _parse_entry(entry: Any) -> LayoutPosition | None:
    if not isinstance(entry, dict):
        return None
    x, y, z = entry.get("x"), entry.get("y"), entry.get("z")
    if not _is_number(x) or not _is_number(y):
        return None
    if z is not None and not _is_number(z):
        z = None
    return LayoutPosition(x=float(x), y=float(y), z=None if z is None else float(z), manual=True)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
