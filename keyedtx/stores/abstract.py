"""Abstract transactional store."""

from typing import Any, Protocol, TypeVar

SessionT = TypeVar("SessionT")


class AbstractTransactionalStore(Protocol[SessionT]):
    """Abstract transactional store.

    A store opens independent transactional sessions and runs textual commands in them.
    All failures are raised as `keyedtx.exceptions.StoreError`.
    """

    async def open_session(self) -> SessionT:
        """Open a new transactional session."""
        ...

    async def execute(self, session: SessionT, command: str) -> None:
        """Execute a command in the session."""
        ...

    async def query(self, session: SessionT, command: str) -> Any:
        """Run a query in the session and return its result."""
        ...

    async def commit(self, session: SessionT) -> None:
        """Commit the session and end it."""
        ...

    async def rollback(self, session: SessionT) -> None:
        """Rollback the session and end it."""
        ...
