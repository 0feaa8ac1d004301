from __future__ import annotations

import sqlite3


def _has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cur = conn.cursor()
    cur.execute(f"PRAGMA table_info({table})")
    return any(str(row[1]) == column for row in cur.fetchall())


def upgrade(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    columns = [
        ("entry_type", "TEXT DEFAULT 'conversation'"),
        ("importance", "REAL DEFAULT 0.5"),
        ("subject_user_id", "TEXT DEFAULT NULL"),
        ("subject_user_name", "TEXT DEFAULT NULL"),
    ]
    for name, decl in columns:
        if not _has_column(conn, "memory_entries", name):
            cur.execute(f"ALTER TABLE memory_entries ADD COLUMN {name} {decl}")

    cur.execute(
        """
        UPDATE memory_entries
        SET entry_type = 'conversation'
        WHERE entry_type IS NULL OR TRIM(entry_type) = ''
        """
    )
    cur.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_memory_entries_user_type
        ON memory_entries(user_id, guild_id, entry_type, created_ts)
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_memory_entries_subject ON memory_entries(subject_user_id)")
    conn.commit()
