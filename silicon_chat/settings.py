"""
Chat settings: the configuration snapshot read at the start of every request,
plus the providers that own and persist it.

Providers validate and clamp values (the controller forwards them verbatim)
and notify subscribers whenever a value actually changes.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Union, runtime_checkable

logger = logging.getLogger("silicon_chat.settings")

TEMPERATURE_MIN = 0.0
TEMPERATURE_MAX = 2.0
DEFAULT_SYSTEM_INSTRUCTIONS = "You are a helpful assistant."


@dataclass(frozen=True)
class ChatSettings:
    """Immutable per-request configuration snapshot."""

    streaming_enabled: bool = True
    temperature: float = 0.7
    system_instructions: str = DEFAULT_SYSTEM_INSTRUCTIONS

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatSettings:
        """Build settings from loosely-typed data, ignoring unknown keys.

        Raises:
            ValueError: a value cannot be interpreted.
        """
        defaults = cls()
        streaming = data.get("streaming_enabled", defaults.streaming_enabled)
        if isinstance(streaming, str):
            streaming = parse_setting("streaming_enabled", streaming)
        return cls(
            streaming_enabled=bool(streaming),
            temperature=clamp_temperature(float(data.get("temperature", defaults.temperature))),
            system_instructions=str(data.get("system_instructions", defaults.system_instructions)),
        )


SettingsListener = Callable[[ChatSettings], None]


@runtime_checkable
class SettingsProvider(Protocol):
    """Source of ``ChatSettings`` with a change notification."""

    def snapshot(self) -> ChatSettings: ...

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]: ...


def clamp_temperature(value: float) -> float:
    return min(TEMPERATURE_MAX, max(TEMPERATURE_MIN, value))


def parse_setting(key: str, raw: str) -> Any:
    """Parse a command-line string into the typed value for settings *key*."""
    if key == "streaming_enabled":
        lowered = raw.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"expected a boolean for {key}, got {raw!r}")
    if key == "temperature":
        return float(raw)
    if key == "system_instructions":
        return raw
    raise KeyError(key)


class InMemorySettings:
    """Process-scoped settings provider."""

    def __init__(self, settings: ChatSettings | None = None) -> None:
        self._settings = settings or ChatSettings()
        self._listeners: list[SettingsListener] = []

    def snapshot(self) -> ChatSettings:
        return self._settings

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes: Any) -> ChatSettings:
        """Apply *changes*, clamping temperature. Notifies only on an actual change.

        Raises:
            KeyError: an unknown setting name was given.
            OSError: a persisting provider could not save; nothing changes.
        """
        known = {f.name for f in dataclasses.fields(ChatSettings)}
        unknown = set(changes) - known
        if unknown:
            raise KeyError(f"unknown setting(s): {', '.join(sorted(unknown))}")
        if "temperature" in changes:
            changes["temperature"] = clamp_temperature(float(changes["temperature"]))

        updated = dataclasses.replace(self._settings, **changes)
        if updated == self._settings:
            return updated
        # Persist first: a failed save leaves the snapshot and subscribers untouched.
        self._on_changed(updated)
        self._settings = updated
        for listener in list(self._listeners):
            listener(updated)
        return updated

    def reset(self) -> ChatSettings:
        return self.update(**ChatSettings().to_dict())

    def _on_changed(self, settings: ChatSettings) -> None:
        """Hook for subclasses that persist settings."""


class JsonFileSettings(InMemorySettings):
    """Settings provider persisted to a JSON file so preferences survive restarts."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()
        super().__init__(self._load())

    def _load(self) -> ChatSettings:
        if not self.path.exists():
            return ChatSettings()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("settings file must contain a JSON object")
            return ChatSettings.from_dict(data)
        except (OSError, ValueError, TypeError):
            logger.warning(
                "[SiliconChat] Could not read settings from '%s'; using defaults.",
                self.path,
                exc_info=True,
            )
            return ChatSettings()

    def _on_changed(self, settings: ChatSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def __repr__(self) -> str:
        return f"JsonFileSettings(path={self.path!r})"
