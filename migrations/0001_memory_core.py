from __future__ import annotations

import sqlite3


def upgrade(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS user_facts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            guild_id TEXT NOT NULL,
            fact_type TEXT NOT NULL,
            fact TEXT NOT NULL,
            confidence REAL DEFAULT 1.0,
            created_at_utc TEXT NOT NULL,
            created_ts INTEGER NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS memory_entries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            channel_id TEXT NOT NULL,
            guild_id TEXT NOT NULL,
            user_message TEXT NOT NULL,
            bot_response TEXT NOT NULL,
            user_name TEXT NOT NULL,
            created_at_utc TEXT NOT NULL,
            created_ts INTEGER NOT NULL
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_user_facts_user ON user_facts(user_id, guild_id, created_ts)")
    cur.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_memory_entries_partition
        ON memory_entries(user_id, channel_id, guild_id, created_ts)
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_memory_entries_created_ts ON memory_entries(created_ts)")
    conn.commit()
