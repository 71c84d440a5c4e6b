"""SQLAlchemy providers."""

from typing import Any

from dishka import Provider, Scope, provide
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from keyedtx.configs.serializer import KeyedSerializerConfig
from keyedtx.configs.sqlalchemy import SQLAlchemyConfig
from keyedtx.locks.abstract import AbstractAdvisoryLockClient
from keyedtx.locks.mssql import MSSQLAdvisoryLockClient
from keyedtx.serializer import KeyedSerializer
from keyedtx.stores.abstract import AbstractTransactionalStore
from keyedtx.stores.sqlalchemy import SQLAlchemyTransactionalStore


class SQLAlchemyProvider(Provider):
    """SQLAlchemy provider."""

    @provide(scope=Scope.APP)
    async def db_engine(self, sqlalchemy_config: SQLAlchemyConfig) -> AsyncEngine:
        """Get db engine."""
        engine_kwargs: dict[str, Any] = {}
        if sqlalchemy_config.isolation_level is not None:
            engine_kwargs["isolation_level"] = sqlalchemy_config.isolation_level
        if not sqlalchemy_config.use_pool:
            engine_kwargs["poolclass"] = NullPool

        return create_async_engine(sqlalchemy_config.url, **engine_kwargs)

    @provide(scope=Scope.APP)
    async def db_session_maker(self, db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
        """Get db session maker.

        Args:
            db_engine (AsyncEngine): The db engine.

        Returns:
            async_sessionmaker[AsyncSession]: The db session maker.

        """
        return async_sessionmaker(db_engine, expire_on_commit=False)


class KeyedSerializerProvider(Provider):
    """Keyed serializer provider.

    Needs `async_sessionmaker[AsyncSession]` and `KeyedSerializerConfig` from other providers.
    """

    @provide(scope=Scope.APP)
    async def transactional_store(
        self, db_session_maker: async_sessionmaker[AsyncSession]
    ) -> AbstractTransactionalStore[AsyncSession]:
        """Get the transactional store."""
        return SQLAlchemyTransactionalStore(db_session_maker)

    @provide(scope=Scope.APP)
    async def advisory_lock_client(
        self, store: AbstractTransactionalStore[AsyncSession]
    ) -> AbstractAdvisoryLockClient[AsyncSession]:
        """Get the advisory lock client."""
        return MSSQLAdvisoryLockClient(store)

    @provide(scope=Scope.APP)
    async def keyed_serializer(
        self,
        store: AbstractTransactionalStore[AsyncSession],
        lock_client: AbstractAdvisoryLockClient[AsyncSession],
        config: KeyedSerializerConfig,
    ) -> KeyedSerializer[AsyncSession]:
        """Get the keyed serializer.

        Args:
            store (AbstractTransactionalStore[AsyncSession]): The transactional store.
            lock_client (AbstractAdvisoryLockClient[AsyncSession]): The advisory lock client.
            config (KeyedSerializerConfig): The keyed serializer config.

        Returns:
            KeyedSerializer[AsyncSession]: The keyed serializer.

        """
        return KeyedSerializer.from_config(store, lock_client, config)
