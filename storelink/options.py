"""Connection options derived from the environment and the deployment tier."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from .env import get_number, get_str

URI_VAR = "DATASTORE_URI"
DB_NAME_VAR = "DATASTORE_DB_NAME"
RUNTIME_ENV_VAR = "RUNTIME_ENV"
SOCKET_TIMEOUT_VAR = "SOCKET_TIMEOUT_MS"
SERVER_SELECTION_TIMEOUT_VAR = "SERVER_SELECTION_TIMEOUT_MS"
CONNECT_TIMEOUT_VAR = "CONNECT_TIMEOUT_MS"


class Tier(str, Enum):
    """Deployment environment recognised in ``RUNTIME_ENV``."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"

    @property
    def is_production(self) -> bool:
        return self is Tier.PRODUCTION


class TierPolicy(BaseModel):
    """Defaults that differ between production and everything else."""

    model_config = ConfigDict(frozen=True)

    pool_size: int
    socket_timeout_ms: int
    server_selection_timeout_ms: int
    connect_timeout_ms: int
    max_retries: int
    reliability_flags: bool


DEFAULT_POLICY = TierPolicy(
    pool_size=10,
    socket_timeout_ms=30000,
    server_selection_timeout_ms=5000,
    connect_timeout_ms=30000,
    max_retries=1,
    reliability_flags=False,
)

PRODUCTION_POLICY = TierPolicy(
    pool_size=20,
    socket_timeout_ms=45000,
    server_selection_timeout_ms=10000,
    connect_timeout_ms=30000,
    max_retries=3,
    reliability_flags=True,
)


def policy_for(tier: Tier) -> TierPolicy:
    return PRODUCTION_POLICY if tier.is_production else DEFAULT_POLICY


class ConnectionOptions(BaseModel):
    """Everything needed for one connection attempt."""

    model_config = ConfigDict(frozen=True)

    uri: str
    db_name: str
    tier: Tier = Tier.DEVELOPMENT
    pool_size: int = Field(default=DEFAULT_POLICY.pool_size, gt=0)
    socket_timeout_ms: int = Field(default=DEFAULT_POLICY.socket_timeout_ms, gt=0)
    server_selection_timeout_ms: int = Field(default=DEFAULT_POLICY.server_selection_timeout_ms, gt=0)
    connect_timeout_ms: int = Field(default=DEFAULT_POLICY.connect_timeout_ms, gt=0)
    max_retries: int = Field(default=DEFAULT_POLICY.max_retries, ge=1)

    # Production-only reliability flags; None means "not requested".
    retry_writes: bool | None = None
    retry_reads: bool | None = None
    write_concern: str | None = None
    read_preference: str | None = None
    tls: bool | None = None
    tls_allow_invalid_certificates: bool | None = None
    auth_source: str | None = None

    def reliability_flags(self) -> dict[str, object]:
        """Return only the reliability flags that are set."""

        fields = (
            "retry_writes",
            "retry_reads",
            "write_concern",
            "read_preference",
            "tls",
            "tls_allow_invalid_certificates",
            "auth_source",
        )
        return {name: getattr(self, name) for name in fields if getattr(self, name) is not None}

    def describe(self) -> str:
        """Human readable summary with credentials stripped from the URI."""

        return (
            f"{_redact(self.uri)} db={self.db_name} tier={self.tier.value} "
            f"pool={self.pool_size} retries={self.max_retries}"
        )


def build_connection_options(environ: Mapping[str, str] | None = None) -> ConnectionOptions:
    """Read connection settings from the environment and apply the tier policy.

    Configuration errors propagate unchanged; they are never retried.
    """

    uri = get_str(URI_VAR, environ=environ)
    db_name = get_str(DB_NAME_VAR, environ=environ)
    tier = Tier(
        get_str(
            RUNTIME_ENV_VAR,
            default=Tier.DEVELOPMENT.value,
            validate=_is_known_tier,
            environ=environ,
        )
    )
    policy = policy_for(tier)

    socket_timeout = _timeout(SOCKET_TIMEOUT_VAR, policy.socket_timeout_ms, environ)
    selection_timeout = _timeout(SERVER_SELECTION_TIMEOUT_VAR, policy.server_selection_timeout_ms, environ)
    connect_timeout = _timeout(CONNECT_TIMEOUT_VAR, policy.connect_timeout_ms, environ)

    extras: dict[str, Any] = {}
    if policy.reliability_flags:
        extras = {
            "retry_writes": True,
            "retry_reads": True,
            "write_concern": "majority",
            "read_preference": "secondaryPreferred",
            "tls": True,
            "tls_allow_invalid_certificates": False,
            "auth_source": "admin",
        }

    return ConnectionOptions(
        uri=uri,
        db_name=db_name,
        tier=tier,
        pool_size=policy.pool_size,
        socket_timeout_ms=socket_timeout,
        server_selection_timeout_ms=selection_timeout,
        connect_timeout_ms=connect_timeout,
        max_retries=policy.max_retries,
        **extras,
    )


def _timeout(name: str, default: int, environ: Mapping[str, str] | None) -> int:
    value = get_number(
        name,
        default=default,
        validate=lambda ms: ms > 0 or f"Timeout must be a positive number of milliseconds, got {ms}",
        environ=environ,
    )
    return math.ceil(value)


def _is_known_tier(value: str) -> bool | str:
    known = ", ".join(tier.value for tier in Tier)
    return value in {tier.value for tier in Tier} or f"Unknown runtime environment {value!r} (expected one of {known})"


def _redact(uri: str) -> str:
    scheme, sep, rest = uri.partition("://")
    if not sep or "@" not in rest:
        return uri
    _, host = rest.rsplit("@", 1)
    return f"{scheme}://***@{host}"


__all__ = [
    "ConnectionOptions",
    "DEFAULT_POLICY",
    "PRODUCTION_POLICY",
    "Tier",
    "TierPolicy",
    "build_connection_options",
    "policy_for",
]
