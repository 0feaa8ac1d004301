from __future__ import annotations

import logging
from typing import Any

from config.defaults import ADMIN_MAX_PAGE_SIZE
from config.defaults import MEMORY_ENTRY_TYPES
from memory.service import InvalidInputError
from memory.service import MemoryService
from memory.service import build_fact_payload
from memory.service import build_turn_payload

logger = logging.getLogger(__name__)


def _page_bounds(page: Any, page_size: Any, *, default_size: int = 10) -> tuple[int, int]:
    try:
        p = int(page)
    except (TypeError, ValueError):
        p = 1
    try:
        size = int(page_size)
    except (TypeError, ValueError):
        size = default_size
    return (max(1, p), max(1, min(size, ADMIN_MAX_PAGE_SIZE)))


def _clean(value: Any) -> str | None:
    text = str(value if value is not None else "").strip()
    return text or None


def _failure(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}


class MemoryAdminService:
    """Request/response shaped wrappers over MemoryService for the control API."""

    def __init__(self, memory: MemoryService):
        self.memory = memory

    async def list_facts(
        self,
        *,
        guild_id: Any = None,
        user_id: Any = None,
        fact_type: Any = None,
        query: Any = None,
        page: Any = 1,
        page_size: Any = 10,
    ) -> dict[str, Any]:
        p, size = _page_bounds(page, page_size)
        result = await self.memory.list_facts(
            guild_id=_clean(guild_id),
            user_id=_clean(user_id),
            fact_type=(_clean(fact_type) or "").lower() or None,
            query=_clean(query),
            limit=size,
            offset=(p - 1) * size,
        )
        items, total = result.value
        out = {"items": [f.to_dict() for f in items], "total": total, "page": p, "page_size": size}
        if not result.ok:
            out["error"] = result.error
        return out

    async def list_memories(
        self,
        *,
        guild_id: Any = None,
        user_id: Any = None,
        channel_id: Any = None,
        entry_type: Any = None,
        query: Any = None,
        page: Any = 1,
        page_size: Any = 25,
    ) -> dict[str, Any]:
        p, size = _page_bounds(page, page_size, default_size=25)
        kind = (_clean(entry_type) or "").lower() or None
        if kind is not None and kind not in MEMORY_ENTRY_TYPES:
            return {"items": [], "total": 0, "page": p, "page_size": size, "error": f"unknown memory type: {kind}"}
        result = await self.memory.list_memory_entries(
            guild_id=_clean(guild_id),
            user_id=_clean(user_id),
            channel_id=_clean(channel_id),
            entry_type=kind,
            query=_clean(query),
            limit=size,
            offset=(p - 1) * size,
        )
        items, total = result.value
        out = {"items": [e.to_dict() for e in items], "total": total, "page": p, "page_size": size}
        if not result.ok:
            out["error"] = result.error
        return out

    async def search(self, query: Any, *, guild_id: Any = None, limit: Any = 20) -> dict[str, Any]:
        text = _clean(query)
        if text is None:
            return {"facts": [], "memories": [], "error": "query is required"}
        _p, size = _page_bounds(1, limit, default_size=20)
        facts = await self.memory.list_facts(guild_id=_clean(guild_id), query=text, limit=size)
        memories = await self.memory.list_memory_entries(guild_id=_clean(guild_id), query=text, limit=size)
        out = {
            "facts": [f.to_dict() for f in facts.value[0]],
            "memories": [e.to_dict() for e in memories.value[0]],
        }
        errors = [r.error for r in (facts, memories) if not r.ok]
        if errors:
            out["error"] = "; ".join(errors)
        return out

    async def add_fact(self, body: dict[str, Any]) -> dict[str, Any]:
        body = body or {}
        try:
            # validate before touching storage so bad input gets a precise message
            build_fact_payload(
                user_id=body.get("user_id"),
                guild_id=body.get("guild_id"),
                fact_type=body.get("fact_type"),
                value=body.get("value"),
                confidence=body.get("confidence", 1.0),
            )
        except InvalidInputError as exc:
            return _failure(str(exc))

        result = await self.memory.record_fact(
            body.get("user_id"),
            body.get("guild_id"),
            body.get("fact_type"),
            body.get("value"),
            body.get("confidence", 1.0),
            user_name=body.get("user_name"),
            channel_id=body.get("channel_id"),
            reported_by_id=body.get("reported_by_id"),
            reported_by_name=body.get("reported_by_name"),
        )
        if not result.ok:
            return _failure(result.error or "failed to store fact")
        logger.info("[Memory] admin added fact id=%s user=%s", result.value, body.get("user_id"))
        return {"success": True, "id": result.value}

    async def add_preference(self, body: dict[str, Any]) -> dict[str, Any]:
        body = body or {}
        try:
            build_turn_payload(
                user_id=body.get("user_id"),
                channel_id=body.get("channel_id"),
                guild_id=body.get("guild_id"),
                user_message=body.get("value"),
                bot_response="",
                user_name=body.get("user_name"),
                entry_type="preference",
                importance=body.get("importance"),
            )
        except InvalidInputError as exc:
            return _failure(str(exc))
        if _clean(body.get("value")) is None:
            return _failure("value is required")

        result = await self.memory.record_turn(
            body.get("user_id"),
            body.get("channel_id"),
            body.get("guild_id"),
            _clean(body.get("value")),
            "",
            body.get("user_name"),
            entry_type="preference",
            importance=body.get("importance"),
        )
        if not result.ok:
            return _failure(result.error or "failed to store preference")
        logger.info("[Memory] admin added preference id=%s user=%s", result.value, body.get("user_id"))
        return {"success": True, "id": result.value}

    async def delete_fact(self, fact_id: Any) -> dict[str, Any]:
        try:
            fid = int(fact_id)
        except (TypeError, ValueError):
            return _failure("fact id must be an integer")
        result = await self.memory.delete_fact(fid)
        if not result.ok:
            return _failure(result.error or "failed to delete fact")
        if not result.value:
            return _failure(f"fact #{fid} not found")
        return {"success": True}

    async def delete_memory(self, entry_id: Any) -> dict[str, Any]:
        try:
            eid = int(entry_id)
        except (TypeError, ValueError):
            return _failure("memory id must be an integer")
        result = await self.memory.delete_memory_entry(eid)
        if not result.ok:
            return _failure(result.error or "failed to delete memory")
        if not result.value:
            return _failure(f"memory #{eid} not found")
        return {"success": True}

    async def clear_user(self, user_id: Any, guild_id: Any = None) -> dict[str, Any]:
        uid = _clean(user_id)
        if uid is None:
            return _failure("user_id is required")
        result = await self.memory.clear_user(uid, guild_id)
        if not result.ok:
            return _failure(result.error or "failed to clear user memory")
        return {"success": True}

    async def stats(self, guild_id: Any = None) -> dict[str, Any]:
        result = await self.memory.get_stats(guild_id)
        out = result.value.to_dict()
        if not result.ok:
            out["error"] = result.error
        return out
