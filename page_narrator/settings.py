from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from page_narrator.audio import DEFAULT_PLAYER_COMMAND
from page_narrator.segmenter import (
    DEFAULT_MIN_PARAGRAPH_LENGTH,
    DEFAULT_SENTENCES_PER_PARAGRAPH,
)
from page_narrator.synthesis import MAX_SYNTHESIS_ATTEMPTS, RETRY_DELAY_SECONDS, TTSSettings

logger = logging.getLogger(__name__)

ENV_PREFIX = "PAGE_NARRATOR_"
DEFAULT_HOME = Path.home() / ".page_narrator"
SETTINGS_FILENAME = "settings.json"


@dataclass(frozen=True)
class NarratorSettings:
    voice: str = "en-US-JennyNeural"
    rate: str = "+0%"
    pitch: str = "+0Hz"
    cache_dir: Path = DEFAULT_HOME / "audio"
    library_path: Path = DEFAULT_HOME / "books.json"
    sentences_per_paragraph: int = DEFAULT_SENTENCES_PER_PARAGRAPH
    min_paragraph_length: int = DEFAULT_MIN_PARAGRAPH_LENGTH
    chars_per_view: int = 1500
    max_attempts: int = MAX_SYNTHESIS_ATTEMPTS
    retry_delay: float = RETRY_DELAY_SECONDS
    prefetch: bool = True
    player_command: tuple[str, ...] = DEFAULT_PLAYER_COMMAND

    def tts_settings(self) -> TTSSettings:
        return TTSSettings(voice=self.voice, rate=self.rate, pitch=self.pitch)


def default_settings_path() -> Path:
    return DEFAULT_HOME / SETTINGS_FILENAME


def _coerce(name: str, value: Any) -> Any:
    default = getattr(NarratorSettings, name)
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, Path):
        return Path(str(value)).expanduser()
    if isinstance(default, tuple):
        if isinstance(value, str):
            return tuple(value.split())
        return tuple(str(item) for item in value)
    return str(value).strip()


def _apply(settings: NarratorSettings, values: Mapping[str, Any], source: str) -> NarratorSettings:
    updates: dict[str, Any] = {}
    for field in fields(NarratorSettings):
        if field.name not in values or values[field.name] is None:
            continue
        try:
            updates[field.name] = _coerce(field.name, values[field.name])
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid %s value for %s.", source, field.name)
    return replace(settings, **updates)


def settings_from_environ(
    settings: NarratorSettings, environ: Mapping[str, str] | None = None
) -> NarratorSettings:
    environ = os.environ if environ is None else environ
    values = {
        field.name: environ[ENV_PREFIX + field.name.upper()]
        for field in fields(NarratorSettings)
        if ENV_PREFIX + field.name.upper() in environ
    }
    return _apply(settings, values, "environment")


def load_settings(
    path: Path | None = None, environ: Mapping[str, str] | None = None
) -> NarratorSettings:
    """Defaults, then the JSON file at ``path``, then ``PAGE_NARRATOR_*`` variables."""
    path = default_settings_path() if path is None else path
    settings = NarratorSettings()
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable settings file %s.", path)
            raw = None
        if isinstance(raw, dict):
            settings = _apply(settings, raw, "settings file")
    return settings_from_environ(settings, environ)


def save_settings(settings: NarratorSettings, path: Path | None = None) -> Path:
    path = default_settings_path() if path is None else path
    payload = asdict(settings)
    payload["cache_dir"] = str(settings.cache_dir)
    payload["library_path"] = str(settings.library_path)
    payload["player_command"] = list(settings.player_command)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return path
