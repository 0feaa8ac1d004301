from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from config.defaults import DB_TIMEOUT_SECONDS
from config.defaults import DEFAULT_FACT_CONFIDENCE
from config.defaults import DEFAULT_MEMORY_IMPORTANCE
from config.defaults import DM_GUILD_SENTINEL
from config.defaults import MEMORY_ENTRY_TYPES
from db.migrate import apply_sqlite_migrations
from db.migrate import connect_sqlite
from memory import store
from memory.models import Fact
from memory.models import MemoryConfig
from memory.models import MemoryEntry
from memory.models import MemoryResult
from memory.models import MemoryStats

logger = logging.getLogger(__name__)

STORAGE_UNAVAILABLE = "memory storage unavailable"


class InvalidInputError(ValueError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = str(code)


def utc_now() -> tuple[str, int]:
    now = datetime.now(timezone.utc)
    return (now.isoformat(), int(now.timestamp()))


def normalize_score(raw: Any, *, default: float, name: str = "value") -> float:
    if raw is None:
        return float(default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"invalid_{name}", f"{name} must be numeric") from exc
    if value != value:
        raise InvalidInputError(f"invalid_{name}", f"{name} must be numeric")
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return float(value)


def _required(value: Any, name: str) -> str:
    text = str(value if value is not None else "").strip()
    if not text:
        raise InvalidInputError(f"missing_{name}", f"{name} is required")
    return text


def resolve_guild_id(guild_id: Any) -> str:
    text = str(guild_id if guild_id is not None else "").strip()
    return text or DM_GUILD_SENTINEL


def build_fact_payload(
    *,
    user_id: Any,
    guild_id: Any,
    fact_type: Any,
    value: Any,
    confidence: Any = DEFAULT_FACT_CONFIDENCE,
    user_name: str | None = None,
    channel_id: Any = None,
    reported_by_id: Any = None,
    reported_by_name: str | None = None,
) -> dict[str, Any]:
    created_at_utc, created_ts = utc_now()
    return {
        "user_id": _required(user_id, "user_id"),
        "guild_id": resolve_guild_id(guild_id),
        "fact_type": _required(fact_type, "fact_type").lower(),
        "value": _required(value, "value"),
        "confidence": normalize_score(confidence, default=DEFAULT_FACT_CONFIDENCE, name="confidence"),
        "created_at_utc": created_at_utc,
        "created_ts": created_ts,
        "user_name": (str(user_name).strip() or None) if user_name else None,
        "channel_id": str(channel_id) if channel_id not in (None, "") else None,
        "reported_by_id": str(reported_by_id) if reported_by_id not in (None, "") else None,
        "reported_by_name": (str(reported_by_name).strip() or None) if reported_by_name else None,
    }


def build_turn_payload(
    *,
    user_id: Any,
    channel_id: Any,
    guild_id: Any,
    user_message: Any,
    bot_response: Any,
    user_name: Any,
    entry_type: str = "conversation",
    importance: Any = None,
    subject_user_id: Any = None,
    subject_user_name: str | None = None,
) -> dict[str, Any]:
    kind = str(entry_type or "conversation").strip().lower()
    if kind not in MEMORY_ENTRY_TYPES:
        raise InvalidInputError("invalid_entry_type", f"entry_type must be one of {', '.join(MEMORY_ENTRY_TYPES)}")
    created_at_utc, created_ts = utc_now()
    return {
        "user_id": _required(user_id, "user_id"),
        "channel_id": _required(channel_id, "channel_id"),
        "guild_id": resolve_guild_id(guild_id),
        "user_message": str(user_message or ""),
        "bot_response": str(bot_response or ""),
        "user_name": str(user_name or "").strip() or str(user_id),
        "created_at_utc": created_at_utc,
        "created_ts": created_ts,
        "entry_type": kind,
        "importance": normalize_score(importance, default=DEFAULT_MEMORY_IMPORTANCE, name="importance"),
        "subject_user_id": str(subject_user_id) if subject_user_id not in (None, "") else None,
        "subject_user_name": subject_user_name or None,
    }


class MemoryService:
    """
    Async facade over memory.store.

    Every call runs on a worker thread with its own short-lived connection, so
    requests for unrelated partitions never queue behind one another. Storage
    failures come back as MemoryResult(ok=False) instead of raising.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        config_provider: Callable[[], MemoryConfig] | None = None,
        migrations_dir: str | Path | None = None,
        timeout: float = DB_TIMEOUT_SECONDS,
    ):
        self.db_path = str(db_path)
        self.migrations_dir = migrations_dir
        self.timeout = float(timeout)
        self._config_provider = config_provider or MemoryConfig
        self._available = False

    @property
    def available(self) -> bool:
        return self._available

    def initialize(self) -> bool:
        try:
            conn = connect_sqlite(self.db_path, timeout=self.timeout)
            try:
                applied = apply_sqlite_migrations(conn, self.migrations_dir)
            finally:
                conn.close()
        except (sqlite3.Error, OSError, RuntimeError) as exc:
            self._available = False
            logger.warning("[Memory] storage unavailable at %s: %s; memory disabled", self.db_path, exc)
            return False
        self._available = True
        if applied:
            logger.info("[Memory] applied %d migration(s) to %s", len(applied), self.db_path)
        logger.info("[Memory] database ready at %s", self.db_path)
        return True

    def _call(self, fn: Callable, args: tuple, kwargs: dict) -> Any:
        conn = connect_sqlite(self.db_path, timeout=self.timeout)
        try:
            return fn(conn, *args, **kwargs)
        finally:
            conn.close()

    async def _run(self, label: str, fn: Callable, *args: Any, default: Any, **kwargs: Any) -> MemoryResult:
        if not self._available:
            return MemoryResult.failure(default, STORAGE_UNAVAILABLE)
        try:
            value = await asyncio.to_thread(self._call, fn, args, kwargs)
        except (sqlite3.Error, OSError) as exc:
            logger.warning("[Memory] %s failed: %s", label, exc)
            return MemoryResult.failure(default, f"{label} failed: {exc}")
        return MemoryResult.success(value)

    # ---- writes ----

    async def record_turn(
        self,
        user_id: Any,
        channel_id: Any,
        guild_id: Any,
        user_message: str,
        bot_response: str,
        user_name: str,
        *,
        entry_type: str = "conversation",
        importance: float | None = None,
        subject_user_id: Any = None,
        subject_user_name: str | None = None,
        config: MemoryConfig | None = None,
    ) -> MemoryResult[int | None]:
        try:
            payload = build_turn_payload(
                user_id=user_id,
                channel_id=channel_id,
                guild_id=guild_id,
                user_message=user_message,
                bot_response=bot_response,
                user_name=user_name,
                entry_type=entry_type,
                importance=importance,
                subject_user_id=subject_user_id,
                subject_user_name=subject_user_name,
            )
        except InvalidInputError as exc:
            logger.warning("[Memory] record_turn rejected: %s", exc)
            return MemoryResult.failure(None, str(exc))

        cfg = config or self._config_provider()
        return await self._run(
            "record_turn",
            store.insert_memory_entry_sync,
            payload,
            default=None,
            max_entries=cfg.context_message_count,
            max_preferences=cfg.max_user_preferences,
        )

    async def record_fact(
        self,
        user_id: Any,
        guild_id: Any,
        fact_type: str,
        value: str,
        confidence: float = DEFAULT_FACT_CONFIDENCE,
        *,
        user_name: str | None = None,
        channel_id: Any = None,
        reported_by_id: Any = None,
        reported_by_name: str | None = None,
        config: MemoryConfig | None = None,
    ) -> MemoryResult[int | None]:
        try:
            payload = build_fact_payload(
                user_id=user_id,
                guild_id=guild_id,
                fact_type=fact_type,
                value=value,
                confidence=confidence,
                user_name=user_name,
                channel_id=channel_id,
                reported_by_id=reported_by_id,
                reported_by_name=reported_by_name,
            )
        except InvalidInputError as exc:
            logger.warning("[Memory] record_fact rejected: %s", exc)
            return MemoryResult.failure(None, str(exc))

        cfg = config or self._config_provider()
        return await self._run(
            "record_fact",
            store.insert_fact_sync,
            payload,
            default=None,
            max_facts=cfg.max_user_facts,
        )

    # ---- reads ----

    async def get_recent_turns(self, user_id: Any, channel_id: Any, guild_id: Any, limit: int) -> MemoryResult[list[MemoryEntry]]:
        return await self._run(
            "get_recent_turns",
            store.fetch_recent_entries_sync,
            str(user_id),
            str(channel_id),
            resolve_guild_id(guild_id),
            int(limit),
            default=[],
        )

    async def get_preferences(self, user_id: Any, guild_id: Any, limit: int) -> MemoryResult[list[MemoryEntry]]:
        return await self._run(
            "get_preferences",
            store.fetch_preferences_sync,
            str(user_id),
            resolve_guild_id(guild_id),
            int(limit),
            default=[],
        )

    async def get_facts(self, user_id: Any, guild_id: Any, limit: int = 10) -> MemoryResult[list[Fact]]:
        return await self._run(
            "get_facts",
            store.fetch_facts_sync,
            str(user_id),
            resolve_guild_id(guild_id),
            int(limit),
            default=[],
        )

    async def get_all_facts(self, guild_id: Any = None) -> MemoryResult[list[Fact]]:
        return await self._run("get_all_facts", store.fetch_all_facts_sync, _optional(guild_id), default=[])

    async def get_all_memory_entries(self, guild_id: Any = None) -> MemoryResult[list[MemoryEntry]]:
        return await self._run(
            "get_all_memory_entries",
            store.fetch_all_memory_entries_sync,
            _optional(guild_id),
            default=[],
        )

    async def list_facts(self, **filters: Any) -> MemoryResult[tuple[list[Fact], int]]:
        return await self._run("list_facts", store.list_facts_sync, default=([], 0), **filters)

    async def list_memory_entries(self, **filters: Any) -> MemoryResult[tuple[list[MemoryEntry], int]]:
        return await self._run("list_memory_entries", store.list_memory_entries_sync, default=([], 0), **filters)

    async def get_stats(self, guild_id: Any = None) -> MemoryResult[MemoryStats]:
        return await self._run(
            "get_stats",
            store.memory_stats_sync,
            _optional(guild_id),
            default=MemoryStats(guild_id=_optional(guild_id) or "all"),
        )

    # ---- deletes ----

    async def delete_fact(self, fact_id: int) -> MemoryResult[bool]:
        return await self._run("delete_fact", store.delete_fact_sync, int(fact_id), default=False)

    async def delete_memory_entry(self, entry_id: int) -> MemoryResult[bool]:
        return await self._run("delete_memory_entry", store.delete_memory_entry_sync, int(entry_id), default=False)

    async def clear_user(self, user_id: Any, guild_id: Any) -> MemoryResult[bool]:
        result = await self._run(
            "clear_user",
            store.clear_user_sync,
            str(user_id),
            resolve_guild_id(guild_id),
            default=None,
        )
        if not result.ok:
            return MemoryResult.failure(False, result.error or STORAGE_UNAVAILABLE)
        facts_deleted, entries_deleted = result.value
        logger.info(
            "[Memory] cleared user=%s guild=%s facts=%d entries=%d",
            user_id,
            guild_id,
            facts_deleted,
            entries_deleted,
        )
        return MemoryResult.success(True)

    async def purge_expired(self, max_age_days: int) -> MemoryResult[int]:
        return await self._run("purge_expired", store.purge_expired_sync, int(max_age_days), default=0)


def _optional(value: Any) -> str | None:
    text = str(value if value is not None else "").strip()
    return text or None
