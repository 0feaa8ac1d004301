from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from config.defaults import FACT_TYPES
from memory.models import MemoryConfig
from memory.service import InvalidInputError
from memory.service import MemoryService
from memory.service import normalize_score

logger = logging.getLogger(__name__)

MAX_FACTS_PER_TURN = 5


def extract_json_array(text: str) -> list[dict]:
    """
    Strict-ish: tries json.loads; if it fails, extracts the first [...] block and loads that.
    """
    if not text:
        return []
    text = text.strip()

    try:
        data = json.loads(text)
        return data if isinstance(data, list) else []
    except ValueError:
        pass

    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end != -1 and end > start:
        blob = text[start : end + 1]
        try:
            data = json.loads(blob)
            return data if isinstance(data, list) else []
        except ValueError:
            return []

    return []


def build_extraction_prompt(user_name: str, user_message: str, bot_response: str) -> str:
    snippet = " ".join((user_message or "").split())
    if len(snippet) > 1200:
        snippet = snippet[:1199] + "..."
    return (
        "You extract durable personal facts that a user states about themselves in a chat message.\n"
        "Return a JSON array only. Each item has keys fact_type, value, confidence.\n"
        "Rules:\n"
        f"- fact_type must be one of: {', '.join(FACT_TYPES)}.\n"
        "- value is a short third-person statement about the user.\n"
        "- confidence is a number from 0 to 1.\n"
        "- Ignore jokes, hypotheticals, and facts about other people.\n"
        "- Return [] when there is nothing worth remembering.\n\n"
        f"User ({user_name}): {snippet}\n"
        f"Assistant: {' '.join((bot_response or '').split())[:600]}\n"
    )


def parse_extracted_facts(raw: str) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    seen: set[tuple[str, str]] = set()
    for item in extract_json_array(raw):
        if not isinstance(item, dict):
            continue
        value = " ".join(str(item.get("value") or "").split())
        if not value:
            continue
        fact_type = str(item.get("fact_type") or "other").strip().lower()
        if fact_type not in FACT_TYPES:
            fact_type = "other"
        try:
            confidence = normalize_score(item.get("confidence"), default=0.5, name="confidence")
        except InvalidInputError:
            confidence = 0.5
        key = (fact_type, value.lower())
        if key in seen:
            continue
        seen.add(key)
        out.append({"fact_type": fact_type, "value": value, "confidence": confidence})
        if len(out) >= MAX_FACTS_PER_TURN:
            break
    return out


async def extract_and_store_facts(
    memory: MemoryService,
    complete: Callable[[str], str],
    *,
    user_id: Any,
    guild_id: Any,
    channel_id: Any,
    user_name: str,
    user_message: str,
    bot_response: str,
    config: MemoryConfig,
) -> int:
    """Ask the model for facts in one exchange and store them. Returns the number stored."""
    prompt = build_extraction_prompt(user_name, user_message, bot_response)
    try:
        raw = await asyncio.to_thread(complete, prompt)
    except Exception as exc:
        logger.warning("[Memory] fact extraction call failed: %s", exc)
        return 0

    stored = 0
    for fact in parse_extracted_facts(raw or ""):
        if fact["fact_type"] == "preference":
            # preferences live in their own retention class, not in user_facts
            result = await memory.record_turn(
                user_id,
                channel_id,
                guild_id,
                fact["value"],
                "",
                user_name,
                entry_type="preference",
                importance=fact["confidence"],
                config=config,
            )
            if result.ok:
                stored += 1
            continue
        result = await memory.record_fact(
            user_id,
            guild_id,
            fact["fact_type"],
            fact["value"],
            fact["confidence"],
            user_name=user_name,
            channel_id=channel_id,
            reported_by_id=user_id,
            reported_by_name=user_name,
            config=config,
        )
        if result.ok:
            stored += 1
    if stored:
        logger.info("[Memory] extracted %d fact(s) user=%s guild=%s", stored, user_id, guild_id)
    return stored
