"""Keyed serializer config."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from keyedtx.locks.abstract import DEFAULT_LOCK_TIMEOUT

PRIMING_RESOURCE_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$"
DEFAULT_OUTER_SUFFIX = "_OUTER"


class KeyedSerializerConfig(BaseSettings):
    """Keyed serializer config.

    This config is used to configure the keyed serializer.

    Attributes:
        priming_resource (str): An existing table read at the start of every session.
            Some stores only accept advisory lock calls after the transaction touched data.
        lock_timeout (float): Seconds to wait for each of the outer and inner locks. Defaults to 60.
        outer_suffix (str): Suffix appended to a key to name its outer lock. Defaults to "_OUTER".
        trace_keys (bool): Whether lock keys are recorded as span attributes. Keys may carry
            business identifiers, so they are left out of traces unless enabled. Defaults to False.

    """

    model_config = SettingsConfigDict(env_prefix="KEYEDTX_")

    priming_resource: str = Field(
        pattern=PRIMING_RESOURCE_PATTERN, description="An existing table read at the start of every session."
    )
    lock_timeout: float = Field(
        default=DEFAULT_LOCK_TIMEOUT, gt=0, description="Seconds to wait for each of the outer and inner locks."
    )
    outer_suffix: str = Field(
        default=DEFAULT_OUTER_SUFFIX, min_length=1, description="Suffix appended to a key to name its outer lock."
    )
    trace_keys: bool = Field(default=False, description="Whether lock keys are recorded as span attributes.")
