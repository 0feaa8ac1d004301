from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class Fact:
    id: int | None
    user_id: str
    guild_id: str
    fact_type: str
    value: str
    confidence: float = 1.0
    created_at_utc: str | None = None
    created_ts: int = 0
    user_name: str | None = None
    channel_id: str | None = None
    reported_by_id: str | None = None
    reported_by_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "guild_id": self.guild_id,
            "channel_id": self.channel_id,
            "fact_type": self.fact_type,
            "value": self.value,
            "confidence": self.confidence,
            "reported_by_id": self.reported_by_id,
            "reported_by_name": self.reported_by_name,
            "created_at_utc": self.created_at_utc,
        }


@dataclass(slots=True)
class MemoryEntry:
    id: int | None
    user_id: str
    channel_id: str
    guild_id: str
    user_message: str
    bot_response: str
    user_name: str
    created_at_utc: str | None = None
    created_ts: int = 0
    entry_type: str = "conversation"
    importance: float = 0.5
    subject_user_id: str | None = None
    subject_user_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "channel_id": self.channel_id,
            "guild_id": self.guild_id,
            "user_message": self.user_message,
            "bot_response": self.bot_response,
            "entry_type": self.entry_type,
            "importance": self.importance,
            "subject_user_id": self.subject_user_id,
            "subject_user_name": self.subject_user_name,
            "created_at_utc": self.created_at_utc,
        }


@dataclass(frozen=True, slots=True)
class MemoryConfig:
    enable_memory: bool = False
    context_message_count: int = 100
    max_user_facts: int = 15
    max_user_preferences: int = 10
    include_facts_for_mentioned_users: bool = True
    max_mentioned_user_facts: int = 5
    decay_enabled: bool = False
    decay_factor: float = 0.5
    decay_threshold: float = 0.1
    decay_max_days: int = 30


@dataclass(slots=True)
class MemoryResult(Generic[T]):
    """Outcome of a store operation. Storage problems never raise past the service."""

    ok: bool
    value: T
    error: str | None = None

    @classmethod
    def success(cls, value: T) -> "MemoryResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, value: T, error: str) -> "MemoryResult[T]":
        return cls(ok=False, value=value, error=str(error))


@dataclass(slots=True)
class MemoryStats:
    total_facts: int = 0
    total_memories: int = 0
    guild_id: str = "all"
    memory_types: dict[str, int] = field(default_factory=dict)
    fact_types: dict[str, int] = field(default_factory=dict)
    top_active_users: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_facts": self.total_facts,
            "total_memories": self.total_memories,
            "guild_id": self.guild_id,
            "memory_types": dict(self.memory_types),
            "fact_types": dict(self.fact_types),
            "top_active_users": list(self.top_active_users),
        }
