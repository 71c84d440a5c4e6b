"""Keyed serialization of transactions.

Snapshot isolation lets two transactions read the same stale state and commit writes that
are consistent alone but not together (write skew). `KeyedSerializer` hands out sessions
that hold an exclusive advisory lock for a key, so at most one session per key is active.

Two locks are used per key. The outer lock serializes entrants and is taken in a short
lived outer session. The inner lock is taken in a new session opened only after the
outer lock was granted, so the session returned to the caller sees the database as it is
after any wait, not as it was when the lock was requested.
"""

import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Generic, Self, TypeAlias, TypeVar

from opentelemetry import trace

from keyedtx.configs.serializer import DEFAULT_OUTER_SUFFIX, PRIMING_RESOURCE_PATTERN, KeyedSerializerConfig
from keyedtx.exceptions import InvalidKeyError, LockConflictError
from keyedtx.locks.abstract import (
    DEFAULT_LOCK_TIMEOUT,
    AbstractAdvisoryLockClient,
    AcquireResult,
    sanitize_key,
)
from keyedtx.stores.abstract import AbstractTransactionalStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SessionT = TypeVar("SessionT")

_ExitCallback: TypeAlias = Callable[
    [type[BaseException] | None, BaseException | None, TracebackType | None], Awaitable[bool]
]


@dataclass(frozen=True, slots=True)
class LockKeys:
    """Lock names derived from one logical key.

    Attributes:
        inner (str): The key itself, held by the session returned to the caller.
        outer (str): The key with the outer suffix, held only during the handshake.

    """

    inner: str
    outer: str


def derive_lock_keys(key: Any, outer_suffix: str = DEFAULT_OUTER_SUFFIX) -> LockKeys:
    """Derive and validate the inner and outer lock names of a key.

    Keys ending with the outer suffix are rejected, so an inner lock name never equals
    the outer lock name of another key.

    Raises:
        InvalidKeyError: If the key or one of the derived names is invalid.

    """
    inner = sanitize_key(key).raw
    if inner.endswith(outer_suffix):
        raise InvalidKeyError(f"Lock key must not end with the reserved suffix {outer_suffix!r}.")

    outer = sanitize_key(inner + outer_suffix).raw
    return LockKeys(inner=inner, outer=outer)


class KeyedSerializer(Generic[SessionT]):
    """Hands out transactional sessions serialized by key.

    Build it with `__init__` from explicit values, or with `from_config` from a
    `KeyedSerializerConfig`. On SQL Server the lock client is normally
    `MSSQLAdvisoryLockClient(store)` over the same store, so the locks are taken in the
    sessions the serializer opens.

    Example:
    ```
        serializer = KeyedSerializer(store, MSSQLAdvisoryLockClient(store), "dbo.orders")

        session = await serializer.acquire("order-42")
        try:
            ...
            await store.commit(session)
        except Exception:
            await store.rollback(session)
            raise
    ```

    """

    def __init__(
        self,
        store: AbstractTransactionalStore[SessionT],
        lock_client: AbstractAdvisoryLockClient[SessionT],
        priming_resource: str,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        outer_suffix: str = DEFAULT_OUTER_SUFFIX,
        trace_keys: bool = False,
    ) -> None:
        """Initialize the serializer.

        Args:
            store (AbstractTransactionalStore[SessionT]): The store to open sessions from.
            lock_client (AbstractAdvisoryLockClient[SessionT]): The advisory lock client for the store.
            priming_resource (str): An existing table read at the start of every session.
            lock_timeout (float): Seconds to wait for each of the outer and inner locks.
            outer_suffix (str): Suffix appended to a key to name its outer lock.
            trace_keys (bool): Whether lock keys are recorded as span attributes.

        """
        if not re.fullmatch(PRIMING_RESOURCE_PATTERN, priming_resource):
            raise ValueError(f"Priming resource must be a table name, got {priming_resource!r}.")
        if lock_timeout <= 0:
            raise ValueError("Lock timeout must be positive.")
        if not outer_suffix:
            raise ValueError("Outer suffix must not be empty.")

        self._store = store
        self._lock_client = lock_client
        self._lock_timeout = lock_timeout
        self._outer_suffix = outer_suffix
        self._trace_keys = trace_keys
        self._priming_command = f"SELECT 1 FROM {priming_resource} WHERE 1 = 0"

    @classmethod
    def from_config(
        cls,
        store: AbstractTransactionalStore[SessionT],
        lock_client: AbstractAdvisoryLockClient[SessionT],
        config: KeyedSerializerConfig,
    ) -> Self:
        """Create a serializer from a config."""
        return cls(
            store,
            lock_client,
            config.priming_resource,
            lock_timeout=config.lock_timeout,
            outer_suffix=config.outer_suffix,
            trace_keys=config.trace_keys,
        )

    @property
    def lock_timeout(self) -> float:
        """Seconds to wait for each of the outer and inner locks."""
        return self._lock_timeout

    def lock_keys(self, key: Any) -> LockKeys:
        """Derive the lock names of a key with this serializer's outer suffix."""
        return derive_lock_keys(key, self._outer_suffix)

    async def acquire(self, key: str) -> SessionT:
        """Open a session that holds the exclusive lock for the key.

        May wait up to `lock_timeout` for the outer lock and again for the inner lock.
        The caller owns the returned session and must commit or roll it back; the lock
        is held until then.

        Should only be used when the operation run in the session may be retried on failure.

        Args:
            key (str): The logical key to serialize on.

        Returns:
            SessionT: A session holding the inner lock of the key.

        Raises:
            InvalidKeyError: If the key is invalid. No session is opened.
            LockConflictError: If another session holds the key. Safe to retry.
            StoreError: If the store failed.

        """
        lock_keys = self.lock_keys(key)
        attributes = {"keyedtx.key": lock_keys.inner} if self._trace_keys else {}

        with tracer.start_as_current_span(
            "keyedtx.acquire",
            attributes=attributes,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                return await self._acquire(lock_keys)
            except LockConflictError as exc:
                # Contention is expected, not an error of the span.
                span.set_attribute("keyedtx.conflict", True)
                if self._trace_keys:
                    span.set_attribute("keyedtx.conflict_key", exc.key)
                logger.info("Lock %s is held by another transaction", exc.key)
                raise
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(exc)))
                raise

    @asynccontextmanager
    async def serialized(self, key: str) -> AsyncIterator[SessionT]:
        """Run a block in a session serialized by key.

        The session is committed when the block exits normally and rolled back when it raises.
        """
        session = await self.acquire(key)
        try:
            yield session
        except BaseException as exc:
            try:
                await self._store.rollback(session)
            except Exception:
                # Keep the error of the block.
                logger.exception("Rollback failed while handling %r", exc)
            raise

        await self._store.commit(session)

    async def _acquire(self, lock_keys: LockKeys) -> SessionT:
        # The inner scope encloses the outer one, so the inner session is also rolled back
        # when releasing the outer session fails.
        async with AsyncExitStack() as inner_scope:
            async with AsyncExitStack() as outer_scope:
                outer = await self._open_primed_session(outer_scope)

                await self._ensure_available(outer, lock_keys.inner)
                await self._ensure_available(outer, lock_keys.outer)
                await self._take_lock(outer, lock_keys.outer)

                # Opened only now, so its snapshot is taken after any wait for the outer lock.
                inner = await self._open_primed_session(inner_scope)

                await self._ensure_available(inner, lock_keys.inner)
                await self._take_lock(inner, lock_keys.inner)

            # The outer session is rolled back on every path, releasing the outer lock.
            # Whoever gets the outer lock next is blocked by the inner lock held here.
            inner_scope.pop_all()

        logger.debug("Lock %s acquired", lock_keys.inner)
        return inner

    async def _open_primed_session(self, scope: AsyncExitStack) -> SessionT:
        session = await self._store.open_session()
        scope.push_async_exit(self._rollback_on_exit(session))
        await self._store.query(session, self._priming_command)
        return session

    async def _ensure_available(self, session: SessionT, lock_key: str) -> None:
        if not await self._lock_client.is_available(session, lock_key):
            raise LockConflictError(lock_key)

    async def _take_lock(self, session: SessionT, lock_key: str) -> None:
        result = await self._lock_client.acquire(session, lock_key, self._lock_timeout)
        if result is AcquireResult.ACQUIRED_AFTER_WAIT:
            logger.info("Lock %s acquired after waiting", lock_key)

    def _rollback_on_exit(self, session: SessionT) -> _ExitCallback:
        async def rollback(
            exc_type: type[BaseException] | None,
            exc_value: BaseException | None,
            traceback: TracebackType | None,
        ) -> bool:
            try:
                await self._store.rollback(session)
            except Exception:
                if exc_value is None:
                    raise
                # Keep the original error.
                logger.exception("Rollback failed while handling %r", exc_value)
            return False

        return rollback
