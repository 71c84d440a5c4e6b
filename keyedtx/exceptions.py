"""Keyed transaction exceptions."""


class KeyedTransactionError(Exception):
    """Base class for keyed transaction errors."""


class InvalidKeyError(KeyedTransactionError, ValueError):
    """Lock key is empty, not a string or too long.

    This is a caller bug. Retrying with the same key will fail again.
    """


class LockConflictError(KeyedTransactionError):
    """Another session holds the inner or outer lock for the key.

    Contention is an expected outcome, so the operation is safe to retry.
    """

    def __init__(self, key: str) -> None:
        """Initialize the error.

        Args:
            key (str): The lock key that is held by another session.

        """
        self.key = key
        super().__init__(f"A transaction is already in progress for lock: {key}")


class StoreError(KeyedTransactionError):
    """The transactional store failed to open, query, commit or rollback a session."""
