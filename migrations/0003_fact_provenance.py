from __future__ import annotations

import sqlite3


def _has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cur = conn.cursor()
    cur.execute(f"PRAGMA table_info({table})")
    return any(str(row[1]) == column for row in cur.fetchall())


def upgrade(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    for name in ("user_name", "channel_id", "reported_by_id", "reported_by_name"):
        if not _has_column(conn, "user_facts", name):
            cur.execute(f"ALTER TABLE user_facts ADD COLUMN {name} TEXT DEFAULT NULL")

    cur.execute("CREATE INDEX IF NOT EXISTS idx_user_facts_guild_created ON user_facts(guild_id, created_ts)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_user_facts_type ON user_facts(fact_type)")
    conn.commit()
