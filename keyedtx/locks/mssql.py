"""SQL Server advisory lock client."""

import logging
from typing import Any, Final, TypeVar

from keyedtx.exceptions import LockConflictError, StoreError
from keyedtx.locks.abstract import DEFAULT_LOCK_TIMEOUT, AbstractAdvisoryLockClient, AcquireResult, sanitize_key
from keyedtx.stores.abstract import AbstractTransactionalStore

logger = logging.getLogger(__name__)

SessionT = TypeVar("SessionT")

LOCK_RESOURCE_PRINCIPAL: Final = "public"

# sp_getapplock return codes.
_GRANTED: Final = {0: AcquireResult.ACQUIRED, 1: AcquireResult.ACQUIRED_AFTER_WAIT}
_TIMED_OUT: Final = -1
_DEADLOCK_VICTIM: Final = -3
_CONFLICTS: Final = frozenset({_TIMED_OUT, _DEADLOCK_VICTIM})


class MSSQLAdvisoryLockClient(AbstractAdvisoryLockClient[SessionT]):
    """Advisory locks on SQL Server application locks.

    Uses `APPLOCK_TEST` to probe and `sp_getapplock` to acquire, both in `Exclusive` mode
    owned by the `Transaction`. The session must already be inside a transaction that
    touched data, otherwise SQL Server rejects `sp_getapplock`.
    """

    def __init__(self, store: AbstractTransactionalStore[SessionT]) -> None:
        """Initialize the client.

        Args:
            store (AbstractTransactionalStore[SessionT]): The store to run lock commands with.

        """
        self._store = store

    async def is_available(self, session: SessionT, key: str) -> bool:
        """Check whether the application lock is free.

        `APPLOCK_TEST` only reports whether the lock could be granted, it never takes it.
        """
        sanitized = sanitize_key(key)
        command = (
            f"SELECT APPLOCK_TEST('{LOCK_RESOURCE_PRINCIPAL}', N{sanitized.literal}, 'Exclusive', 'Transaction') "
            "AS lock_available"
        )
        result = await self._store.query(session, command)
        return bool(self._scalar(result, command))

    async def acquire(self, session: SessionT, key: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> AcquireResult:
        """Take the application lock, waiting up to `timeout` seconds.

        The `sp_getapplock` return code is selected back and classified: `0` and `1` are
        grants, `-1` (timeout) and `-3` (deadlock victim) are conflicts, anything else is
        a store error.
        """
        if timeout < 0:
            raise ValueError("Lock timeout must not be negative.")

        sanitized = sanitize_key(key)
        command = (
            "SET NOCOUNT ON; "
            "DECLARE @result INT; "
            "EXEC @result = sp_getapplock "
            f"@Resource = N{sanitized.literal}, "
            "@LockMode = 'Exclusive', "
            "@LockOwner = 'Transaction', "
            f"@LockTimeout = {round(timeout * 1000)}; "
            "SELECT @result AS result"
        )
        code = int(self._scalar(await self._store.query(session, command), command))

        if code in _GRANTED:
            return _GRANTED[code]
        if code in _CONFLICTS:
            logger.debug("sp_getapplock returned %s for lock %s", code, key)
            raise LockConflictError(key)
        raise StoreError(f"sp_getapplock failed with code {code} for lock: {key}")

    @staticmethod
    def _scalar(result: Any, command: str) -> Any:
        value = result.scalar()
        if value is None:
            raise StoreError(f"Lock command returned no value: {command}")
        return value
