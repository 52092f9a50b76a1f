"""
Durable session storage: whole-session load, save and delete over SQLite.
"""
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional, Union

from mise.database import get_db, init_database
from mise.errors import PersistenceError
from mise.models import Message, Session

logger = logging.getLogger(__name__)


def _session_from_rows(row, message_rows) -> Session:
    """Convert stored rows into a Session, rejecting malformed records."""
    try:
        messages = [
            Message(
                id=m["id"],
                role=m["role"],
                content=m["content"],
                created_at=m["created_at"],
                model=m["model"],
                topic=m["topic"],
            )
            for m in message_rows
        ]
        return Session(
            id=row["id"],
            topic=row["topic"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            messages=messages,
        )
    except (ValueError, TypeError) as e:
        raise PersistenceError(f"Malformed stored session '{row['id']}': {e}") from e


class SessionStore:
    """Key-value view of the sessions and messages tables."""

    def __init__(self, path: Union[str, Path]):
        self.path = path

    @asynccontextmanager
    async def _connection(self):
        try:
            async with get_db(self.path) as db:
                yield db
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Session store failure: {e}") from e

    async def init(self) -> None:
        try:
            await init_database(self.path)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Could not initialize session store: {e}") from e

    async def load(self, session_id: str) -> Optional[Session]:
        """Get session with all messages, or None when it was never saved."""
        async with self._connection() as db:
            cursor = await db.execute(
                "SELECT * FROM sessions WHERE id = ?",
                (session_id,)
            )
            row = await cursor.fetchone()

            if not row:
                return None

            cursor = await db.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY position ASC",
                (session_id,)
            )
            message_rows = await cursor.fetchall()

        return _session_from_rows(row, message_rows)

    async def save(self, session: Session) -> None:
        """Write the session row and every message in one transaction."""
        async with self._connection() as db:
            await db.execute(
                """
                INSERT INTO sessions (id, topic, metadata, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    topic = excluded.topic,
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at
                """,
                (
                    session.id,
                    session.topic.value if session.topic else None,
                    json.dumps(session.metadata),
                    session.created_at.isoformat(),
                    session.updated_at.isoformat(),
                )
            )
            await db.executemany(
                """
                INSERT INTO messages
                    (id, session_id, position, role, content, created_at, model, topic)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    position = excluded.position,
                    content = excluded.content
                """,
                [
                    (
                        m.id,
                        session.id,
                        position,
                        m.role,
                        m.content,
                        m.created_at.isoformat(),
                        m.model,
                        m.topic.value if m.topic else None,
                    )
                    for position, m in enumerate(session.messages)
                ]
            )
            await db.commit()
        logger.debug("Saved session %s (%d messages)", session.id, len(session.messages))

    async def delete(self, session_id: str) -> None:
        async with self._connection() as db:
            await db.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            await db.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            await db.commit()

    async def list_ids(self) -> List[str]:
        """Return stored session ids, most recently updated first."""
        async with self._connection() as db:
            cursor = await db.execute(
                "SELECT id FROM sessions ORDER BY updated_at DESC"
            )
            rows = await cursor.fetchall()
        return [row["id"] for row in rows]
