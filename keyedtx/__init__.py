"""Keyed serialization of transactions on snapshot isolation databases."""

from keyedtx.exceptions import InvalidKeyError, KeyedTransactionError, LockConflictError, StoreError
from keyedtx.locks.abstract import AbstractAdvisoryLockClient, AcquireResult, SanitizedKey, sanitize_key
from keyedtx.serializer import KeyedSerializer, LockKeys, derive_lock_keys
from keyedtx.stores.abstract import AbstractTransactionalStore

__all__ = [
    "AbstractAdvisoryLockClient",
    "AbstractTransactionalStore",
    "AcquireResult",
    "InvalidKeyError",
    "KeyedSerializer",
    "KeyedTransactionError",
    "LockConflictError",
    "LockKeys",
    "SanitizedKey",
    "StoreError",
    "derive_lock_keys",
    "sanitize_key",
]
