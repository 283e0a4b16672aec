"""Display settings and their persistent store."""

from __future__ import annotations

import json
import logging
import os
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from copilot.errors import SettingsNotSaved
from copilot.profiles import ProfileId

logger = logging.getLogger(__name__)


class StealthLevel(str, Enum):
    OFF = "off"
    BALANCED = "balanced"
    ULTRA = "ultra"


class Layout(str, Enum):
    NORMAL = "normal"
    COMPACT = "compact"


class Settings(BaseModel):
    """Immutable settings record. Updates produce a new value via ``merged``."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    transparency: float = Field(0.9, ge=0.0, le=1.0)
    font_size: int = Field(14, gt=0)
    stealth_level: StealthLevel = StealthLevel.BALANCED
    profile: ProfileId = ProfileId.INTERVIEW
    layout: Layout = Layout.NORMAL

    @classmethod
    def _aliased(cls, partial: Mapping[str, Any]) -> Dict[str, Any]:
        # Accept either snake_case field names or camelCase aliases
        out: Dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            alias = field.alias or name
            if alias in partial:
                out[alias] = partial[alias]
            elif name in partial:
                out[alias] = partial[name]
        return out

    def merged(self, partial: Mapping[str, Any]) -> "Settings":
        """Return a full replacement with ``partial`` applied. Raises ValidationError."""
        data = self.to_dict()
        data.update(self._aliased(partial))
        return Settings.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _tolerant_load(raw: Mapping[str, Any]) -> Settings:
    """Merge ``raw`` onto defaults, dropping any field that fails validation."""
    data = Settings._aliased(raw)
    while True:
        try:
            return Settings().merged(data)
        except ValidationError as e:
            bad = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
            bad &= set(data)
            if not bad:
                return Settings()
            logger.warning("Ignoring invalid saved settings fields: %s", ", ".join(sorted(bad)))
            for key in bad:
                data.pop(key, None)


class SettingsStore:
    """Owns the current Settings value; persists and broadcasts every change."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._settings = Settings()
        self._listeners: List[Callable[[Settings], None]] = []
        self._lock = threading.Lock()

    @property
    def current(self) -> Settings:
        return self._settings

    def load(self) -> Settings:
        """Load saved settings, tolerating a missing file and partial records."""
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.error("Error loading settings from %s: %s", self.path, e)
                raw = {}
            if not isinstance(raw, dict):
                logger.error("Settings file %s does not hold an object, using defaults", self.path)
                raw = {}
            self._settings = _tolerant_load(raw)
        else:
            self._settings = Settings()
        return self._settings

    def update(self, partial: Mapping[str, Any]) -> Settings:
        """Apply a partial update, persist it, and notify subscribers.

        The in-memory value only changes once the file has been written.

        Raises:
            pydantic.ValidationError: The merged document is invalid.
            SettingsNotSaved: The file could not be written.
        """
        with self._lock:
            new_settings = self._settings.merged(partial)
            try:
                self._save(new_settings)
            except OSError as e:
                logger.error("Error saving settings to %s: %s", self.path, e)
                raise SettingsNotSaved() from e
            self._settings = new_settings
            listeners = list(self._listeners)

        for listener in listeners:
            listener(new_settings)
        return new_settings

    def subscribe(self, listener: Callable[[Settings], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _save(self, settings: Settings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
