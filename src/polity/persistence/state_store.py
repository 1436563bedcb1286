"""State store — durable JSON snapshot of all governance state.

The store holds one JSON document with a section per component. Each
save rewrites the whole document through a temporary file and an
atomic replace, so a crash never leaves a half-written state file.
Write failures surface as OSError for the service to roll back.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

STATE_VERSION = 1


class StateStore:
    """Single-file JSON persistence for governance state."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = Path(storage_path)
        self._state: dict[str, Any] = {}
        if self._storage_path.exists():
            with self._storage_path.open("r", encoding="utf-8") as f:
                self._state = json.load(f)
            version = self._state.get("version", STATE_VERSION)
            if version != STATE_VERSION:
                raise ValueError(
                    f"Unsupported state version {version} in {self._storage_path}"
                )

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def has_state(self) -> bool:
        return "access" in self._state

    def load_section(self, name: str) -> Optional[Any]:
        return self._state.get(name)

    def load_ordinal(self) -> int:
        return int(self._state.get("ordinal", 0))

    def save(self, sections: dict[str, Any], ordinal: int) -> None:
        """Replace the stored document with the given sections."""
        document = {"version": STATE_VERSION, "ordinal": ordinal, **sections}
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self._storage_path)
        self._state = document

    def save_ordinal(self, ordinal: int) -> None:
        """Rewrite the stored document with a new ordinal only."""
        sections = {
            k: v for k, v in self._state.items() if k not in ("version", "ordinal")
        }
        self.save(sections, ordinal)
