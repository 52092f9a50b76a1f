"""
SQLite database initialization and connection management.
"""
from pathlib import Path
from typing import Union

import aiosqlite


def get_db(path: Union[str, Path]):
    """Get database connection as an async context manager."""
    # aiosqlite.connect doesn't let us set row_factory or pragmas up front,
    # so wrap it and configure the connection once it is open.
    class DBConnection:
        async def __aenter__(self):
            self.conn = await aiosqlite.connect(path)
            self.conn.row_factory = aiosqlite.Row
            await self.conn.execute("PRAGMA foreign_keys = ON")
            return self.conn

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            await self.conn.close()

    return DBConnection()


async def init_database(path: Union[str, Path]):
    """Initialize database with required tables and indexes."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(path) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                topic TEXT,
                metadata TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL,
                model TEXT,
                topic TEXT,
                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_sessions_updated_at
            ON sessions(updated_at)
        """)

        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_session_position
            ON messages(session_id, position)
        """)

        await db.commit()
