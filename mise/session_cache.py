"""
Write-back session cache.

Sessions in use live in memory. Every append marks the entry dirty; a
periodic maintenance pass writes dirty entries to the durable store and then
drops entries that have been idle longer than the expiry window. The durable
copy of an evicted session is untouched, so the next reference reloads it.

Mutations of one session are serialized by a per-session lock; requests
against different sessions never wait on each other. The maintenance pass
takes the same per-session lock around each durable write, so it never sees
a session halfway through an append. There is no cache-wide lock to release:
the pass snapshots the ids of dirty entries, and each write blocks only the
session being written, never the rest of the cache.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from mise.errors import PersistenceError
from mise.models import Message, Session, Topic, new_id, utcnow
from mise.session_store import SessionStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass
class CachedSession:
    session: Session
    last_accessed: datetime
    dirty: bool = False

    def snapshot(self) -> Session:
        return self.session.model_copy(deep=True)


class SessionCache:
    """In-memory owner of session state, synchronized with a SessionStore.

    Public methods hand out copies of the cached sessions; the cached
    objects themselves never leave this class.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        expiry_seconds: float = 30 * 60,
        interval_seconds: float = 5 * 60,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._expiry = timedelta(seconds=expiry_seconds)
        self._interval = interval_seconds
        self._clock = clock
        self._entries: Dict[str, CachedSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        # Deleted ids, so late writes from in-flight generations are dropped
        self._deleted: Dict[str, datetime] = {}
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lookup and creation
    # ------------------------------------------------------------------

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def is_dirty(self, session_id: str) -> bool:
        entry = self._entries.get(session_id)
        return entry is not None and entry.dirty

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def _ensure(self, session_id: str) -> CachedSession:
        """Return the cached entry, loading or creating it. Caller holds the lock."""
        now = self._clock()
        entry = self._entries.get(session_id)
        if entry is not None:
            entry.last_accessed = now
            return entry

        session = await self._store.load(session_id)
        if session is None:
            session = Session(id=session_id, created_at=now, updated_at=now)
            await self._store.save(session)
            logger.info("Created session %s", session_id)
        else:
            logger.debug("Loaded session %s from store", session_id)

        entry = CachedSession(session=session, last_accessed=now)
        self._entries[session_id] = entry
        self._deleted.pop(session_id, None)
        return entry

    async def get_or_create(self, session_id: str) -> Session:
        """Return the session, loading it from the store or creating it."""
        async with self._lock_for(session_id):
            entry = await self._ensure(session_id)
            return entry.snapshot()

    async def get(self, session_id: str) -> Optional[Session]:
        """Read-only lookup; never creates a session."""
        entry = self._entries.get(session_id)
        if entry is not None:
            return entry.snapshot()
        return await self._store.load(session_id)

    async def create(self, topic: Optional[Topic] = None) -> Session:
        """Create a session with a fresh id and persist it immediately."""
        now = self._clock()
        session = Session(id=new_id(), topic=topic, created_at=now, updated_at=now)
        async with self._lock_for(session.id):
            await self._store.save(session)
            self._entries[session.id] = CachedSession(session=session, last_accessed=now)
        logger.info("Created session %s", session.id)
        return session.model_copy(deep=True)

    async def list_sessions(self) -> List[Session]:
        """All sessions, most recently updated first; cached copies win."""
        sessions: Dict[str, Session] = {}
        for session_id in await self._store.list_ids():
            entry = self._entries.get(session_id)
            if entry is not None:
                sessions[session_id] = entry.snapshot()
                continue
            stored = await self._store.load(session_id)
            if stored is not None:
                sessions[session_id] = stored
        for session_id, entry in list(self._entries.items()):
            if session_id not in sessions:
                sessions[session_id] = entry.snapshot()
        return sorted(sessions.values(), key=lambda s: s.updated_at, reverse=True)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _append(self, entry: CachedSession, message: Message) -> None:
        session = entry.session
        session.messages.append(message)
        session.updated_at = message.created_at
        entry.last_accessed = message.created_at
        entry.dirty = True

    def _next_timestamp(self, entry: CachedSession) -> datetime:
        # Messages stay ordered by created_at even if the clock steps back.
        now = self._clock()
        if entry.session.messages:
            return max(now, entry.session.messages[-1].created_at)
        return now

    async def append_user_turn(self, session_id: str, content: str, topic: Topic) -> Session:
        async with self._lock_for(session_id):
            entry = await self._ensure(session_id)
            message = Message(
                role="user",
                content=content,
                created_at=self._next_timestamp(entry),
                topic=topic,
            )
            self._append(entry, message)
            entry.session.topic = topic
            return entry.snapshot()

    async def append_assistant_turn(self, session_id: str, content: str, model: str) -> None:
        async with self._lock_for(session_id):
            entry = self._entries.get(session_id)
            if entry is None:
                if session_id in self._deleted:
                    logger.info("Discarding assistant turn for deleted session %s", session_id)
                    return
                entry = await self._ensure(session_id)
            message = Message(
                role="assistant",
                content=content,
                created_at=self._next_timestamp(entry),
                model=model,
                topic=entry.session.topic,
            )
            self._append(entry, message)

    async def delete(self, session_id: str) -> None:
        """Remove the session from memory and from the durable store."""
        lock = self._lock_for(session_id)
        async with lock:
            # Memory is only dropped once the durable copy is gone
            await self._store.delete(session_id)
            self._entries.pop(session_id, None)
            self._deleted[session_id] = self._clock()
        if not lock.locked() and self._locks.get(session_id) is lock:
            del self._locks[session_id]
        logger.info("Deleted session %s", session_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def flush_dirty(self) -> int:
        """Write every dirty session to the store. Returns the number written.

        A failed write leaves the entry dirty for the next cycle.
        """
        written = 0
        dirty_ids = [sid for sid, entry in self._entries.items() if entry.dirty]
        for session_id in dirty_ids:
            async with self._lock_for(session_id):
                entry = self._entries.get(session_id)
                if entry is None or not entry.dirty:
                    continue
                try:
                    await self._store.save(entry.session)
                except PersistenceError:
                    logger.exception("Failed to flush session %s; retrying next cycle", session_id)
                    continue
                entry.dirty = False
                written += 1
        if written:
            logger.debug("Flushed %d dirty session(s)", written)
        return written

    def evict_expired(self) -> int:
        """Drop idle sessions from memory. Returns the number evicted."""
        now = self._clock()
        evicted = 0
        for session_id, entry in list(self._entries.items()):
            if now - entry.last_accessed <= self._expiry:
                continue
            lock = self._locks.get(session_id)
            if lock is not None and lock.locked():
                continue
            if entry.dirty:
                logger.warning("Session %s expired but is not flushed; keeping it", session_id)
                continue
            del self._entries[session_id]
            self._locks.pop(session_id, None)
            evicted += 1

        for session_id, lock in list(self._locks.items()):
            if session_id not in self._entries and not lock.locked():
                del self._locks[session_id]

        for session_id, deleted_at in list(self._deleted.items()):
            if now - deleted_at > self._expiry:
                del self._deleted[session_id]

        if evicted:
            logger.info("Evicted %d idle session(s); %d remain cached", evicted, len(self._entries))
        return evicted

    async def run_maintenance(self) -> None:
        await self.flush_dirty()
        self.evict_expired()

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_maintenance()
            except Exception:
                logger.exception("Session cache maintenance failed")

    def start(self) -> None:
        """Start the periodic flush-and-evict task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(
                self._maintenance_loop(),
                name="session-cache-maintenance",
            )

    async def stop(self) -> None:
        """Stop the periodic task and flush whatever is still dirty."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush_dirty()
