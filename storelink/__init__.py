"""Typed environment configuration and a cached, resilient data store connection."""

from __future__ import annotations

from .backends import AsyncpgBackend, ConnectionBackend, ConnectionBackendError
from .env import (
    ConfigRequest,
    ConfigValue,
    ValueType,
    get_bool,
    get_env_var,
    get_json,
    get_number,
    get_str,
    parse_boolean,
    parse_json,
    parse_number,
)
from .errors import (
    ConfigError,
    ConfigMismatchError,
    ConnectFailedError,
    ErrorKind,
    InvalidFormatError,
    MissingError,
    NotConnectedError,
    StoreLinkError,
    ValidationFailedError,
)
from .manager import (
    ConnectionManager,
    ConnectionState,
    DataStoreConnection,
    get_connection_manager,
    reset_connection_manager,
    set_connection_manager,
)
from .options import ConnectionOptions, Tier, build_connection_options


def connect(timeout: float | None = None) -> DataStoreConnection:
    """Connect through the process-wide manager (or reuse its connection)."""

    return get_connection_manager().connect(timeout)


def disconnect(timeout: float | None = None) -> None:
    get_connection_manager().disconnect(timeout)


def get_active_connection() -> DataStoreConnection:
    return get_connection_manager().get_active_connection()


__all__ = [
    "AsyncpgBackend",
    "ConfigError",
    "ConfigMismatchError",
    "ConfigRequest",
    "ConfigValue",
    "ConnectFailedError",
    "ConnectionBackend",
    "ConnectionBackendError",
    "ConnectionManager",
    "ConnectionOptions",
    "ConnectionState",
    "DataStoreConnection",
    "ErrorKind",
    "InvalidFormatError",
    "MissingError",
    "NotConnectedError",
    "StoreLinkError",
    "Tier",
    "ValidationFailedError",
    "ValueType",
    "build_connection_options",
    "connect",
    "disconnect",
    "get_active_connection",
    "get_bool",
    "get_connection_manager",
    "get_env_var",
    "get_json",
    "get_number",
    "get_str",
    "parse_boolean",
    "parse_json",
    "parse_number",
    "reset_connection_manager",
    "set_connection_manager",
]
