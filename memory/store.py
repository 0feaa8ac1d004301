from __future__ import annotations

import sqlite3
import time
from typing import Any

from memory.models import Fact
from memory.models import MemoryEntry
from memory.models import MemoryStats

_FACT_COLUMNS = """
    id, user_id, guild_id, fact_type, fact, confidence,
    created_at_utc, created_ts, user_name, channel_id,
    reported_by_id, reported_by_name
"""

_ENTRY_COLUMNS = """
    id, user_id, channel_id, guild_id, user_message, bot_response, user_name,
    created_at_utc, created_ts, entry_type, importance,
    subject_user_id, subject_user_name
"""


def _row_to_fact(row: tuple) -> Fact:
    (
        fid,
        user_id,
        guild_id,
        fact_type,
        value,
        confidence,
        created_at_utc,
        created_ts,
        user_name,
        channel_id,
        reported_by_id,
        reported_by_name,
    ) = row
    return Fact(
        id=int(fid),
        user_id=str(user_id),
        guild_id=str(guild_id),
        fact_type=str(fact_type or ""),
        value=str(value or ""),
        confidence=float(confidence if confidence is not None else 1.0),
        created_at_utc=created_at_utc,
        created_ts=int(created_ts or 0),
        user_name=user_name,
        channel_id=channel_id,
        reported_by_id=reported_by_id,
        reported_by_name=reported_by_name,
    )


def _row_to_entry(row: tuple) -> MemoryEntry:
    (
        eid,
        user_id,
        channel_id,
        guild_id,
        user_message,
        bot_response,
        user_name,
        created_at_utc,
        created_ts,
        entry_type,
        importance,
        subject_user_id,
        subject_user_name,
    ) = row
    return MemoryEntry(
        id=int(eid),
        user_id=str(user_id),
        channel_id=str(channel_id),
        guild_id=str(guild_id),
        user_message=str(user_message or ""),
        bot_response=str(bot_response or ""),
        user_name=str(user_name or ""),
        created_at_utc=created_at_utc,
        created_ts=int(created_ts or 0),
        entry_type=str(entry_type or "conversation"),
        importance=float(importance if importance is not None else 0.5),
        subject_user_id=subject_user_id,
        subject_user_name=subject_user_name,
    )


def _monotonic_ts(cur: sqlite3.Cursor, sql: str, params: tuple, proposed_ts: int) -> int:
    cur.execute(sql, params)
    row = cur.fetchone()
    last_ts = int(row[0]) if row and row[0] is not None else 0
    return max(int(proposed_ts), last_ts)


def insert_memory_entry_sync(
    conn: sqlite3.Connection,
    payload: dict[str, Any],
    *,
    max_entries: int,
    max_preferences: int | None = None,
) -> int:
    """
    Insert one exchange and trim its retention partition in the same transaction.

    Conversation rows are capped per (user, channel, guild); preference rows per
    (user, guild). Caps below 1 are treated as 1 so the new row always survives.
    """
    user_id = str(payload["user_id"])
    channel_id = str(payload["channel_id"])
    guild_id = str(payload["guild_id"])
    entry_type = str(payload.get("entry_type") or "conversation")

    conn.execute("BEGIN IMMEDIATE")
    try:
        cur = conn.cursor()
        created_ts = _monotonic_ts(
            cur,
            "SELECT MAX(created_ts) FROM memory_entries WHERE user_id = ? AND channel_id = ? AND guild_id = ?",
            (user_id, channel_id, guild_id),
            int(payload.get("created_ts") or time.time()),
        )
        cur.execute(
            """
            INSERT INTO memory_entries (
                user_id, channel_id, guild_id,
                user_message, bot_response, user_name,
                created_at_utc, created_ts,
                entry_type, importance, subject_user_id, subject_user_name
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                channel_id,
                guild_id,
                payload["user_message"],
                payload["bot_response"],
                payload["user_name"],
                payload["created_at_utc"],
                created_ts,
                entry_type,
                float(payload.get("importance", 0.5)),
                payload.get("subject_user_id"),
                payload.get("subject_user_name"),
            ),
        )
        entry_id = int(cur.lastrowid)

        if entry_type == "preference":
            if max_preferences is not None:
                cur.execute(
                    """
                    DELETE FROM memory_entries
                    WHERE user_id = ? AND guild_id = ? AND entry_type = 'preference'
                    AND id NOT IN (
                        SELECT id FROM memory_entries
                        WHERE user_id = ? AND guild_id = ? AND entry_type = 'preference'
                        ORDER BY created_ts DESC, id DESC
                        LIMIT ?
                    )
                    """,
                    (user_id, guild_id, user_id, guild_id, max(1, int(max_preferences))),
                )
        else:
            cur.execute(
                """
                DELETE FROM memory_entries
                WHERE user_id = ? AND channel_id = ? AND guild_id = ?
                AND COALESCE(entry_type, 'conversation') != 'preference'
                AND id NOT IN (
                    SELECT id FROM memory_entries
                    WHERE user_id = ? AND channel_id = ? AND guild_id = ?
                    AND COALESCE(entry_type, 'conversation') != 'preference'
                    ORDER BY created_ts DESC, id DESC
                    LIMIT ?
                )
                """,
                (user_id, channel_id, guild_id, user_id, channel_id, guild_id, max(1, int(max_entries))),
            )
        conn.commit()
        return entry_id
    except Exception:
        conn.rollback()
        raise


def insert_fact_sync(
    conn: sqlite3.Connection,
    payload: dict[str, Any],
    *,
    max_facts: int,
) -> int:
    user_id = str(payload["user_id"])
    guild_id = str(payload["guild_id"])

    conn.execute("BEGIN IMMEDIATE")
    try:
        cur = conn.cursor()
        created_ts = _monotonic_ts(
            cur,
            "SELECT MAX(created_ts) FROM user_facts WHERE user_id = ? AND guild_id = ?",
            (user_id, guild_id),
            int(payload.get("created_ts") or time.time()),
        )
        cur.execute(
            """
            INSERT INTO user_facts (
                user_id, guild_id, fact_type, fact, confidence,
                created_at_utc, created_ts,
                user_name, channel_id, reported_by_id, reported_by_name
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                guild_id,
                payload["fact_type"],
                payload["value"],
                float(payload.get("confidence", 1.0)),
                payload["created_at_utc"],
                created_ts,
                payload.get("user_name"),
                payload.get("channel_id"),
                payload.get("reported_by_id"),
                payload.get("reported_by_name"),
            ),
        )
        fact_id = int(cur.lastrowid)
        cur.execute(
            """
            DELETE FROM user_facts
            WHERE user_id = ? AND guild_id = ?
            AND id NOT IN (
                SELECT id FROM user_facts
                WHERE user_id = ? AND guild_id = ?
                ORDER BY created_ts DESC, id DESC
                LIMIT ?
            )
            """,
            (user_id, guild_id, user_id, guild_id, max(1, int(max_facts))),
        )
        conn.commit()
        return fact_id
    except Exception:
        conn.rollback()
        raise


def fetch_recent_entries_sync(
    conn: sqlite3.Connection,
    user_id: str,
    channel_id: str,
    guild_id: str,
    limit: int,
) -> list[MemoryEntry]:
    if int(limit) <= 0:
        return []
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_ENTRY_COLUMNS}
        FROM memory_entries
        WHERE user_id = ? AND channel_id = ? AND guild_id = ?
        AND COALESCE(entry_type, 'conversation') != 'preference'
        ORDER BY created_ts DESC, id DESC
        LIMIT ?
        """,
        (str(user_id), str(channel_id), str(guild_id), int(limit)),
    )
    return [_row_to_entry(r) for r in cur.fetchall()]


def fetch_preferences_sync(
    conn: sqlite3.Connection,
    user_id: str,
    guild_id: str,
    limit: int,
) -> list[MemoryEntry]:
    if int(limit) <= 0:
        return []
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_ENTRY_COLUMNS}
        FROM memory_entries
        WHERE user_id = ? AND guild_id = ? AND entry_type = 'preference'
        ORDER BY created_ts DESC, id DESC
        LIMIT ?
        """,
        (str(user_id), str(guild_id), int(limit)),
    )
    return [_row_to_entry(r) for r in cur.fetchall()]


def fetch_facts_sync(
    conn: sqlite3.Connection,
    user_id: str,
    guild_id: str,
    limit: int,
) -> list[Fact]:
    if int(limit) <= 0:
        return []
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_FACT_COLUMNS}
        FROM user_facts
        WHERE user_id = ? AND guild_id = ?
        ORDER BY created_ts DESC, id DESC
        LIMIT ?
        """,
        (str(user_id), str(guild_id), int(limit)),
    )
    return [_row_to_fact(r) for r in cur.fetchall()]


def _like_pattern(query: str | None) -> str | None:
    """Substring match for LIKE; user text never acts as a wildcard."""
    text = (query or "").strip()
    if not text:
        return None
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _where(clauses: list[tuple[str, Any]]) -> tuple[str, tuple]:
    active = [(sql, value) for sql, value in clauses if value is not None and str(value) != ""]
    if not active:
        return ("", ())
    parts: list[str] = []
    params: list[Any] = []
    for sql, value in active:
        parts.append(sql)
        if sql.count("?") == 2:
            params.extend([value, value])
        else:
            params.append(value)
    return (" WHERE " + " AND ".join(parts), tuple(params))


def list_facts_sync(
    conn: sqlite3.Connection,
    *,
    guild_id: str | None = None,
    user_id: str | None = None,
    fact_type: str | None = None,
    query: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> tuple[list[Fact], int]:
    like = _like_pattern(query)
    where, params = _where(
        [
            ("guild_id = ?", guild_id),
            ("user_id = ?", user_id),
            ("fact_type = ?", fact_type),
            ("(fact LIKE ? ESCAPE '\\' OR fact_type LIKE ? ESCAPE '\\')", like),
        ]
    )
    cur = conn.cursor()
    cur.execute(f"SELECT COUNT(*) FROM user_facts{where}", params)
    total = int(cur.fetchone()[0])

    sql = f"SELECT {_FACT_COLUMNS} FROM user_facts{where} ORDER BY created_ts DESC, id DESC"
    if limit is not None:
        sql += " LIMIT ? OFFSET ?"
        params = params + (int(limit), max(0, int(offset)))
    cur.execute(sql, params)
    return ([_row_to_fact(r) for r in cur.fetchall()], total)


def list_memory_entries_sync(
    conn: sqlite3.Connection,
    *,
    guild_id: str | None = None,
    user_id: str | None = None,
    channel_id: str | None = None,
    entry_type: str | None = None,
    query: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> tuple[list[MemoryEntry], int]:
    like = _like_pattern(query)
    where, params = _where(
        [
            ("guild_id = ?", guild_id),
            ("user_id = ?", user_id),
            ("channel_id = ?", channel_id),
            ("COALESCE(entry_type, 'conversation') = ?", entry_type),
            ("(user_message LIKE ? ESCAPE '\\' OR bot_response LIKE ? ESCAPE '\\')", like),
        ]
    )
    cur = conn.cursor()
    cur.execute(f"SELECT COUNT(*) FROM memory_entries{where}", params)
    total = int(cur.fetchone()[0])

    sql = f"SELECT {_ENTRY_COLUMNS} FROM memory_entries{where} ORDER BY created_ts DESC, id DESC"
    if limit is not None:
        sql += " LIMIT ? OFFSET ?"
        params = params + (int(limit), max(0, int(offset)))
    cur.execute(sql, params)
    return ([_row_to_entry(r) for r in cur.fetchall()], total)


def fetch_all_facts_sync(conn: sqlite3.Connection, guild_id: str | None = None) -> list[Fact]:
    facts, _total = list_facts_sync(conn, guild_id=guild_id)
    return facts


def fetch_all_memory_entries_sync(conn: sqlite3.Connection, guild_id: str | None = None) -> list[MemoryEntry]:
    entries, _total = list_memory_entries_sync(conn, guild_id=guild_id)
    return entries


def delete_fact_sync(conn: sqlite3.Connection, fact_id: int) -> bool:
    cur = conn.cursor()
    cur.execute("DELETE FROM user_facts WHERE id = ?", (int(fact_id),))
    conn.commit()
    return cur.rowcount > 0


def delete_memory_entry_sync(conn: sqlite3.Connection, entry_id: int) -> bool:
    cur = conn.cursor()
    cur.execute("DELETE FROM memory_entries WHERE id = ?", (int(entry_id),))
    conn.commit()
    return cur.rowcount > 0


def clear_user_sync(conn: sqlite3.Connection, user_id: str, guild_id: str) -> tuple[int, int]:
    conn.execute("BEGIN IMMEDIATE")
    try:
        cur = conn.cursor()
        cur.execute("DELETE FROM user_facts WHERE user_id = ? AND guild_id = ?", (str(user_id), str(guild_id)))
        facts_deleted = int(cur.rowcount)
        cur.execute("DELETE FROM memory_entries WHERE user_id = ? AND guild_id = ?", (str(user_id), str(guild_id)))
        entries_deleted = int(cur.rowcount)
        conn.commit()
        return (facts_deleted, entries_deleted)
    except Exception:
        conn.rollback()
        raise


def memory_stats_sync(conn: sqlite3.Connection, guild_id: str | None = None, top_users: int = 5) -> MemoryStats:
    where, params = _where([("guild_id = ?", guild_id)])
    cur = conn.cursor()

    cur.execute(f"SELECT COUNT(*) FROM user_facts{where}", params)
    total_facts = int(cur.fetchone()[0])
    cur.execute(f"SELECT COUNT(*) FROM memory_entries{where}", params)
    total_memories = int(cur.fetchone()[0])

    cur.execute(
        f"""
        SELECT COALESCE(entry_type, 'conversation') AS t, COUNT(*)
        FROM memory_entries{where}
        GROUP BY t
        ORDER BY t
        """,
        params,
    )
    memory_types = {str(t): int(n) for (t, n) in cur.fetchall()}

    cur.execute(
        f"SELECT fact_type, COUNT(*) FROM user_facts{where} GROUP BY fact_type ORDER BY fact_type",
        params,
    )
    fact_types = {str(t): int(n) for (t, n) in cur.fetchall()}

    cur.execute(
        f"""
        SELECT user_id, MAX(user_name), COUNT(*) AS n
        FROM memory_entries{where}
        GROUP BY user_id
        ORDER BY n DESC, user_id ASC
        LIMIT ?
        """,
        params + (int(top_users),),
    )
    top_active_users = [
        {"user_id": str(uid), "user_name": str(name or ""), "count": int(n)} for (uid, name, n) in cur.fetchall()
    ]

    return MemoryStats(
        total_facts=total_facts,
        total_memories=total_memories,
        guild_id=str(guild_id) if guild_id else "all",
        memory_types=memory_types,
        fact_types=fact_types,
        top_active_users=top_active_users,
    )


def purge_expired_sync(conn: sqlite3.Connection, max_age_days: int, now_ts: int | None = None) -> int:
    """Delete memory entries older than max_age_days. Facts are left alone."""
    if int(max_age_days) <= 0:
        return 0
    now = int(now_ts if now_ts is not None else time.time())
    cutoff = now - int(max_age_days) * 86400
    cur = conn.cursor()
    cur.execute("DELETE FROM memory_entries WHERE created_ts < ?", (cutoff,))
    deleted = int(cur.rowcount)
    conn.commit()
    return deleted
