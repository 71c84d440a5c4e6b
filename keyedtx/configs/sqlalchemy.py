"""SQLAlchemy config."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SQLAlchemyConfig(BaseSettings):
    """SQLAlchemy config.

    This config is used to configure the sqlalchemy engine the sessions are opened from.

    Attributes:
        url (str): The url of the database, e.g. `mssql+aioodbc://...`.
        use_pool (bool): Whether to use a connection pool. Defaults to False.
        isolation_level (str | None): Isolation level of every session, e.g. `SNAPSHOT`.
            Defaults to None, which keeps the database default.

    """

    model_config = SettingsConfigDict(env_prefix="KEYEDTX_DB_")

    url: str
    use_pool: bool = Field(default=False)
    isolation_level: str | None = Field(default=None)
