"""Utils for tests."""

import asyncio
import itertools
from dataclasses import dataclass, field

from keyedtx.exceptions import LockConflictError, StoreError
from keyedtx.locks.abstract import DEFAULT_LOCK_TIMEOUT, AcquireResult, sanitize_key
from keyedtx.serializer import KeyedSerializer

PRIMING_RESOURCE = "dbo.priming"

_session_ids = itertools.count(1)


@dataclass(eq=False)
class InMemorySession:
    """Session of the in-memory store."""

    id: int = field(default_factory=lambda: next(_session_ids))
    commands: list[str] = field(default_factory=list)
    committed: bool = False
    rolled_back: bool = False
    expired: bool = False

    @property
    def ended(self) -> bool:
        """Whether the session was committed, rolled back or expired."""
        return self.committed or self.rolled_back or self.expired


class InMemoryTransactionalStore:
    """Transactional store that keeps advisory locks in memory.

    Locks are owned by sessions and released when the session ends, like transaction
    scoped locks of a database. Every call yields to the event loop so concurrent
    callers interleave.
    """

    def __init__(self) -> None:
        self.sessions: list[InMemorySession] = []
        self.holders: dict[str, InMemorySession] = {}
        self.fail_on: dict[str, StoreError] = {}
        self.fail_open_after: int | None = None
        self._released = asyncio.Condition()

    async def open_session(self) -> InMemorySession:
        await asyncio.sleep(0)
        if self.fail_open_after is not None and len(self.sessions) >= self.fail_open_after:
            raise StoreError("Could not open a session.")

        session = InMemorySession()
        self.sessions.append(session)
        return session

    async def execute(self, session: InMemorySession, command: str) -> None:
        await self.query(session, command)

    async def query(self, session: InMemorySession, command: str) -> None:
        await asyncio.sleep(0)
        self._ensure_active(session)
        session.commands.append(command)
        for fragment, error in self.fail_on.items():
            if fragment in command:
                raise error

    async def commit(self, session: InMemorySession) -> None:
        self._ensure_active(session)
        session.committed = True
        await self._release(session)

    async def rollback(self, session: InMemorySession) -> None:
        self._ensure_active(session)
        if "rollback" in self.fail_on:
            raise self.fail_on["rollback"]
        session.rolled_back = True
        await self._release(session)

    async def expire(self, session: InMemorySession) -> None:
        """End an abandoned session the way a database times out a dead connection."""
        session.expired = True
        await self._release(session)

    def is_held(self, key: str) -> bool:
        """Whether any live session holds the lock."""
        return key in self.holders

    @property
    def open_sessions(self) -> list[InMemorySession]:
        """Sessions that were neither committed, rolled back nor expired."""
        return [session for session in self.sessions if not session.ended]

    def _ensure_active(self, session: InMemorySession) -> None:
        if session.ended:
            raise StoreError(f"Session {session.id} has ended.")

    async def _release(self, session: InMemorySession) -> None:
        for key in [key for key, holder in self.holders.items() if holder is session]:
            del self.holders[key]
        async with self._released:
            self._released.notify_all()

    async def lock_available(self, session: InMemorySession, key: str) -> bool:
        self._ensure_active(session)
        holder = self.holders.get(key)
        return holder is None or holder is session

    async def acquire_lock(self, session: InMemorySession, key: str, timeout: float) -> AcquireResult:
        self._ensure_active(session)
        if await self.lock_available(session, key):
            self.holders[key] = session
            return AcquireResult.ACQUIRED

        try:
            async with asyncio.timeout(timeout), self._released:
                await self._released.wait_for(lambda: key not in self.holders)
        except TimeoutError:
            raise LockConflictError(key) from None

        self._ensure_active(session)
        self.holders[key] = session
        return AcquireResult.ACQUIRED_AFTER_WAIT


class InMemoryAdvisoryLockClient:
    """Advisory lock client of the in-memory store."""

    def __init__(self, store: InMemoryTransactionalStore) -> None:
        self._store = store

    async def is_available(self, session: InMemorySession, key: str) -> bool:
        sanitized = sanitize_key(key)
        await self._store.query(session, f"TEST {sanitized.literal}")
        return await self._store.lock_available(session, sanitized.raw)

    async def acquire(
        self, session: InMemorySession, key: str, timeout: float = DEFAULT_LOCK_TIMEOUT
    ) -> AcquireResult:
        sanitized = sanitize_key(key)
        await self._store.query(session, f"ACQUIRE {sanitized.literal}")
        return await self._store.acquire_lock(session, sanitized.raw, timeout)


def make_serializer(
    store: InMemoryTransactionalStore, lock_timeout: float = 0.5
) -> KeyedSerializer[InMemorySession]:
    """Make a serializer on the in-memory store with a short lock timeout."""
    return KeyedSerializer(store, InMemoryAdvisoryLockClient(store), PRIMING_RESOURCE, lock_timeout=lock_timeout)
