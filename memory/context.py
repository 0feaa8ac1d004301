from __future__ import annotations

import logging
import re
import time
from typing import Any, Iterable

from memory.decay import filter_by_decay
from memory.models import Fact
from memory.models import MemoryConfig
from memory.models import MemoryEntry
from memory.service import MemoryService

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r"<@!?(\d{5,22})>")


def extract_mentioned_user_ids(text: str, *, exclude: Iterable[Any] = ()) -> list[str]:
    """Discord user mentions in message order, deduplicated."""
    skip = {str(x) for x in exclude if x is not None}
    out: list[str] = []
    for m in MENTION_RE.finditer(text or ""):
        uid = m.group(1)
        if uid in skip or uid in out:
            continue
        out.append(uid)
    return out


def format_conversation(entries: list[MemoryEntry]) -> str:
    if not entries:
        return ""
    lines = ["Recent conversation:"]
    for entry in entries:
        lines.append(f"{entry.user_name}: {entry.user_message}")
        lines.append(f"Assistant: {entry.bot_response}")
    return "\n".join(lines)


def format_facts(facts: list[Fact], heading: str) -> str:
    if not facts:
        return ""
    lines = [heading]
    for fact in facts:
        label = f"{fact.fact_type}: " if fact.fact_type and fact.fact_type != "other" else ""
        lines.append(f"- {label}{fact.value}")
    return "\n".join(lines)


def format_preferences(entries: list[MemoryEntry]) -> str:
    if not entries:
        return ""
    lines = ["Known preferences:"]
    for entry in entries:
        lines.append(f"- {entry.user_message}")
    return "\n".join(lines)


async def _conversation_section(
    memory: MemoryService,
    user_id: Any,
    channel_id: Any,
    guild_id: Any,
    config: MemoryConfig,
    now_ts: float,
) -> str:
    result = await memory.get_recent_turns(user_id, channel_id, guild_id, config.context_message_count)
    if not result.ok:
        return ""
    # storage returns newest first
    entries = list(reversed(result.value))
    entries = filter_by_decay(entries, config, importance_of=lambda e: e.importance, now_ts=now_ts)
    return format_conversation(entries)


async def _facts_section(
    memory: MemoryService,
    user_id: Any,
    guild_id: Any,
    limit: int,
    config: MemoryConfig,
    now_ts: float,
    heading: str,
) -> str:
    if int(limit) <= 0:
        return ""
    result = await memory.get_facts(user_id, guild_id, limit)
    if not result.ok:
        return ""
    facts = filter_by_decay(result.value, config, importance_of=lambda f: f.confidence, now_ts=now_ts)
    return format_facts(facts, heading)


async def _preferences_section(
    memory: MemoryService,
    user_id: Any,
    guild_id: Any,
    config: MemoryConfig,
    now_ts: float,
) -> str:
    if config.max_user_preferences <= 0:
        return ""
    result = await memory.get_preferences(user_id, guild_id, config.max_user_preferences)
    if not result.ok:
        return ""
    prefs = filter_by_decay(result.value, config, importance_of=lambda e: e.importance, now_ts=now_ts)
    return format_preferences(prefs)


async def assemble_context(
    memory: MemoryService,
    user_id: Any,
    channel_id: Any,
    guild_id: Any,
    config: MemoryConfig,
    *,
    mentioned_user_ids: Iterable[Any] = (),
    now_ts: float | None = None,
) -> str:
    """
    Build the context block for one prompt.

    Sections, in order: recent conversation, facts about the requester,
    requester preferences, facts about mentioned users. A section whose
    lookup fails is left out; the rest still render.
    """
    now = time.time() if now_ts is None else float(now_ts)
    sections: list[str] = []

    sections.append(await _conversation_section(memory, user_id, channel_id, guild_id, config, now))
    sections.append(
        await _facts_section(
            memory,
            user_id,
            guild_id,
            config.max_user_facts,
            config,
            now,
            "Known facts about this user:",
        )
    )
    sections.append(await _preferences_section(memory, user_id, guild_id, config, now))

    if config.include_facts_for_mentioned_users:
        seen: set[str] = {str(user_id)}
        for mentioned in mentioned_user_ids:
            mid = str(mentioned)
            if mid in seen:
                continue
            seen.add(mid)
            sections.append(
                await _facts_section(
                    memory,
                    mid,
                    guild_id,
                    config.max_mentioned_user_facts,
                    config,
                    now,
                    f"Known facts about <@{mid}>:",
                )
            )

    return "\n\n".join(s for s in sections if s)


async def remember_exchange(
    memory: MemoryService,
    *,
    user_id: Any,
    channel_id: Any,
    guild_id: Any,
    user_message: str,
    bot_response: str,
    user_name: str,
    config: MemoryConfig,
    mentioned_user_ids: Iterable[Any] = (),
) -> bool:
    """Write a finished exchange back to memory. Failures are logged, never raised."""
    mentioned = [str(x) for x in mentioned_user_ids if str(x) != str(user_id)]
    result = await memory.record_turn(
        user_id,
        channel_id,
        guild_id,
        user_message,
        bot_response,
        user_name,
        subject_user_id=mentioned[0] if mentioned else None,
        config=config,
    )
    if not result.ok:
        logger.warning("[Memory] exchange not stored user=%s channel=%s: %s", user_id, channel_id, result.error)
        return False
    return True
