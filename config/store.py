from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from config.defaults import DEFAULT_CONFIG_PATH
from config.defaults import DEFAULT_DB_PATH
from config.defaults import DEFAULT_PERSONALITY_TRAITS
from config.defaults import DEFAULT_SYSTEM_PROMPT
from config.defaults import RESPONSE_LENGTH_GUIDE
from controller.models import PersonaConfig
from memory.models import MemoryConfig

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = str(code)


@dataclass(frozen=True, slots=True)
class BotConfig:
    bot_name: str = "Assistant"
    db_path: str = DEFAULT_DB_PATH

    # model provider
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_temperature: float = 0.7

    # images
    enable_image_processing: bool = False

    # persona
    # read-only view; snapshots are shared across readers
    personality_traits: MappingProxyType = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_PERSONALITY_TRAITS))
    )
    communication_style: str = "conversational"
    selected_tones: tuple[str, ...] = ("Cheerful", "Supportive")
    use_emojis: bool = True
    roleplay_mode: bool = False
    character_description: str = ""

    # system prompt
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    custom_instructions: str = ""
    response_length: str = "medium"

    # memory
    enable_memory: bool = False
    context_message_count: int = 100
    max_user_facts: int = 15
    max_user_preferences: int = 10
    include_facts_for_mentioned_users: bool = True
    max_mentioned_user_facts: int = 5
    memory_decay_enabled: bool = False
    memory_decay_factor: float = 0.5
    memory_decay_threshold: float = 0.1
    memory_decay_max_days: int = 30
    enable_fact_extraction: bool = False

    def memory_config(self) -> MemoryConfig:
        return MemoryConfig(
            enable_memory=self.enable_memory,
            context_message_count=self.context_message_count,
            max_user_facts=self.max_user_facts,
            max_user_preferences=self.max_user_preferences,
            include_facts_for_mentioned_users=self.include_facts_for_mentioned_users,
            max_mentioned_user_facts=self.max_mentioned_user_facts,
            decay_enabled=self.memory_decay_enabled,
            decay_factor=self.memory_decay_factor,
            decay_threshold=self.memory_decay_threshold,
            decay_max_days=self.memory_decay_max_days,
        )

    def persona(self) -> PersonaConfig:
        return PersonaConfig(
            personality_traits=dict(self.personality_traits),
            communication_style=self.communication_style,
            selected_tones=list(self.selected_tones),
            use_emojis=self.use_emojis,
            roleplay_mode=self.roleplay_mode,
            character_description=self.character_description,
            custom_instructions=self.custom_instructions,
            response_length=self.response_length,
        )


# The config file uses the camelCase keys the web configuration UI writes.
_FILE_KEYS: dict[str, str] = {
    "botName": "bot_name",
    "dbPath": "db_path",
    "openaiApiKey": "openai_api_key",
    "openaiModel": "openai_model",
    "openaiTemperature": "openai_temperature",
    "enableImageProcessing": "enable_image_processing",
    "personalityTraits": "personality_traits",
    "communicationStyle": "communication_style",
    "selectedTones": "selected_tones",
    "useEmojis": "use_emojis",
    "roleplayMode": "roleplay_mode",
    "characterDescription": "character_description",
    "systemPrompt": "system_prompt",
    "customInstructions": "custom_instructions",
    "responseLength": "response_length",
    "enableMemory": "enable_memory",
    "contextMessageCount": "context_message_count",
    "maxUserFacts": "max_user_facts",
    "maxUserPreferences": "max_user_preferences",
    "includeFactsForMentionedUsers": "include_facts_for_mentioned_users",
    "maxMentionedUserFacts": "max_mentioned_user_facts",
    "memoryDecayEnabled": "memory_decay_enabled",
    "memoryDecayFactor": "memory_decay_factor",
    "memoryDecayThreshold": "memory_decay_threshold",
    "memoryDecayMaxDays": "memory_decay_max_days",
    "enableFactExtraction": "enable_fact_extraction",
}
_FIELD_TO_FILE_KEY = {v: k for k, v in _FILE_KEYS.items()}

_BOOL_FIELDS = {
    "enable_image_processing",
    "use_emojis",
    "roleplay_mode",
    "enable_memory",
    "include_facts_for_mentioned_users",
    "memory_decay_enabled",
    "enable_fact_extraction",
}
_NONNEG_INT_FIELDS = {
    "context_message_count",
    "max_user_facts",
    "max_user_preferences",
    "max_mentioned_user_facts",
    "memory_decay_max_days",
}
_NONNEG_FLOAT_FIELDS = {"openai_temperature", "memory_decay_factor", "memory_decay_threshold"}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value or "").strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _coerce_traits(value: Any) -> MappingProxyType:
    if not isinstance(value, Mapping):
        raise ValueError("personality traits must be a mapping")
    out: dict[str, int] = {}
    for name, raw in value.items():
        key = str(name or "").strip()
        if not key:
            continue
        out[key] = max(0, min(10, int(raw)))
    return MappingProxyType(out)


def _coerce_field(name: str, value: Any) -> Any:
    if name in _BOOL_FIELDS:
        return _coerce_bool(value)
    if name in _NONNEG_INT_FIELDS:
        parsed = int(value)
        if parsed < 0:
            raise ValueError(f"{name} must be >= 0")
        return parsed
    if name in _NONNEG_FLOAT_FIELDS:
        parsed = float(value)
        if parsed < 0.0:
            raise ValueError(f"{name} must be >= 0")
        return parsed
    if name == "personality_traits":
        return _coerce_traits(value)
    if name == "selected_tones":
        if isinstance(value, str):
            value = [tok for tok in value.split(",")]
        return tuple(str(t).strip() for t in (value or []) if str(t).strip())
    if name == "response_length":
        text = str(value or "").strip().lower()
        return text if text in RESPONSE_LENGTH_GUIDE else "medium"
    return "" if value is None else str(value)


def _normalize_changes(raw: dict[str, Any]) -> dict[str, Any]:
    known = {f.name for f in fields(BotConfig)}
    out: dict[str, Any] = {}
    for key, value in raw.items():
        name = _FILE_KEYS.get(key, key)
        if name not in known:
            raise ConfigError("unknown_key", f"unknown configuration key: {key}")
        try:
            out[name] = _coerce_field(name, value)
        except (TypeError, ValueError) as exc:
            raise ConfigError("invalid_value", f"invalid value for {key}: {exc}") from exc
    return out


def _env_overrides() -> dict[str, Any]:
    out: dict[str, Any] = {}
    db_path = os.getenv("EMBER_DB_PATH")
    if db_path and db_path.strip():
        out["db_path"] = db_path.strip()
    enable_memory = os.getenv("EMBER_ENABLE_MEMORY")
    if enable_memory is not None and enable_memory.strip():
        out["enable_memory"] = enable_memory.strip() == "1"
    api_key = os.getenv("OPENAI_API_KEY")
    if api_key:
        out["openai_api_key"] = api_key
    model = os.getenv("OPENAI_MODEL")
    if model and model.strip():
        out["openai_model"] = model.strip()
    return out


def load_bot_config(path: str | Path | None) -> tuple[BotConfig, str | None]:
    """
    Returns (config, warning_message). warning_message is None on clean load.
    """
    defaults = BotConfig()
    if not path:
        return (defaults, "Config path missing; using built-in defaults.")

    p = Path(path)
    if not p.exists():
        return (defaults, f"Config file not found at {p}; using built-in defaults.")

    try:
        payload = yaml.safe_load(p.read_text(encoding="utf-8"))
    except Exception as exc:
        return (defaults, f"Failed to read config from {p}: {exc}; using built-in defaults.")

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return (defaults, f"Invalid config format in {p}; using built-in defaults.")

    changes: dict[str, Any] = {}
    skipped: list[str] = []
    for key, value in payload.items():
        try:
            changes.update(_normalize_changes({str(key): value}))
        except ConfigError:
            skipped.append(str(key))

    config = replace(defaults, **changes)
    if skipped:
        return (config, f"Ignored invalid config keys in {p}: {', '.join(sorted(skipped))}")
    return (config, None)


def config_to_file_payload(config: BotConfig) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(config):
        value = getattr(config, f.name)
        name = f.name
        if isinstance(value, tuple):
            value = list(value)
        elif isinstance(value, MappingProxyType):
            value = dict(value)
        out[_FIELD_TO_FILE_KEY.get(name, name)] = value
    return out


class ConfigStore:
    """Process-wide configuration holder.

    Readers take an immutable snapshot per request; writers swap in a new
    snapshot under a lock, so a reader never sees a half-applied update.
    """

    def __init__(self, config: BotConfig | None = None, *, path: str | Path | None = None):
        self._lock = threading.Lock()
        # serializes writers end to end; readers only take _lock
        self._write_lock = threading.Lock()
        self._config = config or BotConfig()
        self._path = Path(path) if path else None

    @classmethod
    def from_env(cls) -> "ConfigStore":
        path = os.getenv("EMBER_CONFIG_PATH", DEFAULT_CONFIG_PATH).strip() or DEFAULT_CONFIG_PATH
        config, warning = load_bot_config(path)
        if warning:
            logger.warning("[CFG] %s", warning)
        overrides = _env_overrides()
        if overrides:
            config = replace(config, **overrides)
        logger.info(
            "[CFG] memory=%s context_messages=%s max_facts=%s decay=%s db=%s",
            config.enable_memory,
            config.context_message_count,
            config.max_user_facts,
            config.memory_decay_enabled,
            config.db_path,
        )
        return cls(config, path=path)

    def snapshot(self) -> BotConfig:
        with self._lock:
            return self._config

    def update(self, changes: dict[str, Any], *, persist: bool = True) -> BotConfig:
        """
        Validate, persist, then publish. If the write fails the in-memory
        snapshot is left as it was and the error propagates.
        """
        normalized = _normalize_changes(dict(changes or {}))
        with self._write_lock:
            updated = replace(self.snapshot(), **normalized)
            if persist and self._path is not None:
                self._write_file(updated)
            with self._lock:
                self._config = updated
        return updated

    def save(self, config: BotConfig | None = None) -> None:
        if self._path is None:
            raise ConfigError("no_path", "config store has no file path")
        with self._write_lock:
            self._write_file(config or self.snapshot())

    def _write_file(self, config: BotConfig) -> None:
        payload = config_to_file_payload(config)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self._path.parent,
            prefix=self._path.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp.write(json.dumps(payload, indent=2, ensure_ascii=False))
            tmp_path = tmp.name
        try:
            os.replace(tmp_path, self._path)
        except OSError:
            os.unlink(tmp_path)
            raise
        logger.info("[CFG] saved configuration to %s", self._path)
