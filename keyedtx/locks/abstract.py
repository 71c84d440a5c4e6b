"""Abstract advisory lock client and lock key sanitization."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, TypeVar

from keyedtx.exceptions import InvalidKeyError

MAX_KEY_LENGTH = 250
DEFAULT_LOCK_TIMEOUT = 60.0

SessionT = TypeVar("SessionT")


class AcquireResult(StrEnum):
    """Outcome of a successful advisory lock acquire.

    Values:
        ACQUIRED: The lock was free and granted immediately.
        ACQUIRED_AFTER_WAIT: The lock was granted after waiting for another holder.
    """

    ACQUIRED = "acquired"
    ACQUIRED_AFTER_WAIT = "acquired_after_wait"


@dataclass(frozen=True, slots=True)
class SanitizedKey:
    """A validated lock key.

    Attributes:
        raw (str): The key as given by the caller.
        literal (str): The key as a quoted string literal, safe to embed in command text.

    """

    raw: str
    literal: str


def sanitize_key(key: Any) -> SanitizedKey:
    """Validate a lock key and quote it for command text.

    Every `'` is doubled so the key can not terminate the literal. Every `:` is escaped
    as `\\:` because commands are compiled with `sqlalchemy.text`, where `:name` is a
    bind parameter.

    Args:
        key (Any): The lock key.

    Returns:
        SanitizedKey: The validated key.

    Raises:
        InvalidKeyError: If the key is not a string, is empty or is longer than `MAX_KEY_LENGTH`.

    """
    if not isinstance(key, str):
        raise InvalidKeyError(f"Lock key must be a string, got {type(key).__name__}.")
    if not 1 <= len(key) <= MAX_KEY_LENGTH:
        raise InvalidKeyError(f"Lock key length must be between 1 and {MAX_KEY_LENGTH} characters, got {len(key)}.")

    escaped = key.replace("'", "''").replace(":", "\\:")
    return SanitizedKey(raw=key, literal=f"'{escaped}'")


class AbstractAdvisoryLockClient(Protocol[SessionT]):
    """Abstract advisory lock client.

    Locks are scoped to the transaction of the session that takes them and are released
    by the store when that session ends. Clients never release locks explicitly.
    """

    async def is_available(self, session: SessionT, key: str) -> bool:
        """Check whether the lock is free without taking it.

        Raises:
            InvalidKeyError: If the key is invalid.
            StoreError: If the store failed.

        """
        ...

    async def acquire(self, session: SessionT, key: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> AcquireResult:
        """Take an exclusive transaction-scoped lock, waiting up to `timeout` seconds.

        Raises:
            InvalidKeyError: If the key is invalid.
            LockConflictError: If another session holds the lock and the wait did not succeed.
            StoreError: If the store failed.

        """
        ...
