from __future__ import annotations

import json
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Mapping


class SettingsStoreError(RuntimeError):
    """Raised when a settings file cannot be saved."""


def default_settings_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "fimpilot" / "settings.json"


def deep_merge_defaults(data: Mapping[str, Any], defaults: Mapping[str, Any]) -> dict[str, Any]:
    """Merge defaults into data without overwriting explicitly provided values."""
    merged = deepcopy(dict(data))
    for key, default_value in defaults.items():
        if key not in merged:
            merged[key] = deepcopy(default_value)
            continue
        current = merged[key]
        if isinstance(current, dict) and isinstance(default_value, dict):
            merged[key] = deep_merge_defaults(current, default_value)
    return merged


def dot_get(data: Mapping[str, Any], key: str, default: Any = None) -> Any:
    if not key:
        return data
    current: Any = data
    for part in key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def dot_set(data: dict[str, Any], key: str, value: Any) -> None:
    if not key:
        raise ValueError("Key cannot be empty.")
    current: dict[str, Any] = data
    parts = key.split(".")
    for part in parts[:-1]:
        next_value = current.get(part)
        if not isinstance(next_value, dict):
            next_value = {}
            current[part] = next_value
        current = next_value
    current[parts[-1]] = value


class JsonSettingsStore:
    """JSON-backed settings file with defaults and dot-key helpers.

    Only keys the user wrote are persisted; ``effective()`` overlays them on
    the defaults.
    """

    def __init__(self, path: Path, defaults: Mapping[str, Any]) -> None:
        self.path = Path(path)
        self.defaults: dict[str, Any] = deepcopy(dict(defaults))
        self.data: dict[str, Any] = {}
        self.dirty: bool = False
        self.last_error: str | None = None

    def load(self) -> dict[str, Any]:
        self.last_error = None
        self.dirty = False
        if not self.path.exists():
            self.data = {}
            return self.data
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except Exception as exc:
            # Keep running on defaults without touching the broken file.
            self.data = {}
            self.last_error = f"Could not read settings file '{self.path}': {exc}"
            return self.data
        if not isinstance(raw, dict):
            self.data = {}
            self.last_error = (
                f"Settings root in '{self.path}' must be a JSON object, "
                f"found {type(raw).__name__}."
            )
            return self.data
        self.data = raw
        return self.data

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self.data, indent=2, sort_keys=True), encoding="utf-8")
            self.dirty = False
            self.last_error = None
        except Exception as exc:
            raise SettingsStoreError(
                f"Could not write settings file '{self.path}': {exc}"
            ) from exc

    def get(self, key: str, default: Any = None) -> Any:
        return dot_get(self.effective(), key, default)

    def set(self, key: str, value: Any) -> bool:
        if dot_get(self.data, key, object()) == value:
            return False
        dot_set(self.data, key, value)
        self.dirty = True
        return True

    def effective(self) -> dict[str, Any]:
        return deep_merge_defaults(self.data, self.defaults)

    def snapshot(self) -> dict[str, Any]:
        return deepcopy(self.data)
