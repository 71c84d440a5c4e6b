"""Unit tests for configs."""

import pytest
from pydantic import ValidationError

from keyedtx.configs.serializer import KeyedSerializerConfig
from keyedtx.configs.sqlalchemy import SQLAlchemyConfig


class TestKeyedSerializerConfig:
    """Tests for KeyedSerializerConfig."""

    def test_defaults(self) -> None:
        """Test the default timeout and suffix."""
        config = KeyedSerializerConfig(priming_resource="foo")

        assert config.lock_timeout == 60.0
        assert config.outer_suffix == "_OUTER"
        assert config.trace_keys is False

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test values are read from prefixed environment variables."""
        monkeypatch.setenv("KEYEDTX_PRIMING_RESOURCE", "dbo.orders")
        monkeypatch.setenv("KEYEDTX_LOCK_TIMEOUT", "1.5")

        config = KeyedSerializerConfig()  # type: ignore[call-arg]

        assert config.priming_resource == "dbo.orders"
        assert config.lock_timeout == 1.5

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"priming_resource": "foo WHERE 1 = 1; --"},
            {"priming_resource": "foo", "lock_timeout": 0},
            {"priming_resource": "foo", "lock_timeout": -1},
            {"priming_resource": "foo", "outer_suffix": ""},
        ],
    )
    def test_invalid(self, kwargs: dict) -> None:
        """Test invalid values are rejected."""
        with pytest.raises(ValidationError):
            KeyedSerializerConfig(**kwargs)


class TestSQLAlchemyConfig:
    """Tests for SQLAlchemyConfig."""

    def test_defaults(self) -> None:
        """Test pooling is off and the isolation level is left to the database."""
        config = SQLAlchemyConfig(url="mssql+aioodbc://localhost/db")

        assert config.use_pool is False
        assert config.isolation_level is None

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test values are read from prefixed environment variables."""
        monkeypatch.setenv("KEYEDTX_DB_URL", "mssql+aioodbc://localhost/db")
        monkeypatch.setenv("KEYEDTX_DB_ISOLATION_LEVEL", "SNAPSHOT")

        config = SQLAlchemyConfig()  # type: ignore[call-arg]

        assert config.url == "mssql+aioodbc://localhost/db"
        assert config.isolation_level == "SNAPSHOT"
