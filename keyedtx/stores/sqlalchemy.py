"""SQLAlchemy transactional store."""

import logging

from sqlalchemy import Result, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keyedtx.exceptions import StoreError
from keyedtx.stores.abstract import AbstractTransactionalStore

logger = logging.getLogger(__name__)


class SQLAlchemyTransactionalStore(AbstractTransactionalStore[AsyncSession]):
    """SQLAlchemy transactional store.

    Every session is a new `AsyncSession` from the session maker, so sessions never share
    a connection. Commands are compiled with `sqlalchemy.text`.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the store.

        Args:
            session_maker (async_sessionmaker[AsyncSession]): The session maker to open sessions with.

        """
        self._session_maker = session_maker

    async def open_session(self) -> AsyncSession:
        """Open a new session.

        Returns:
            AsyncSession: The new session. It begins a transaction on first use.

        Raises:
            StoreError: If the session could not be created.

        """
        try:
            return self._session_maker()
        except SQLAlchemyError as exc:
            raise StoreError("Could not open a session.") from exc

    async def execute(self, session: AsyncSession, command: str) -> None:
        """Execute a command in the session.

        Raises:
            StoreError: If the command failed.

        """
        await self.query(session, command)

    async def query(self, session: AsyncSession, command: str) -> Result:
        """Run a query in the session.

        Returns:
            Result: The buffered result of the query.

        Raises:
            StoreError: If the query failed.

        """
        logger.debug("Executing command: %s", command)
        try:
            return await session.execute(text(command))
        except SQLAlchemyError as exc:
            raise StoreError(f"Command failed: {exc}") from exc

    async def commit(self, session: AsyncSession) -> None:
        """Commit the session and close it.

        If the commit fails, the session is rolled back before the error is raised.

        Raises:
            StoreError: If the commit failed.

        """
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await self.rollback(session)
            raise StoreError(f"Commit failed: {exc}") from exc

        try:
            await session.close()
        except SQLAlchemyError as exc:
            raise StoreError(f"Could not close session: {exc}") from exc

    async def rollback(self, session: AsyncSession) -> None:
        """Rollback the session and close it.

        Raises:
            StoreError: If the rollback failed.

        """
        try:
            await session.rollback()
            await session.close()
        except SQLAlchemyError as exc:
            raise StoreError(f"Rollback failed: {exc}") from exc
