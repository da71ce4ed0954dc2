"""Error taxonomy shared by the configuration accessor and connection manager."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification attached to every storelink error."""

    MISSING = "missing"
    INVALID_FORMAT = "invalid_format"
    CONFIG_MISMATCH = "config_mismatch"
    VALIDATION_FAILED = "validation_failed"
    CONNECT_FAILED = "connect_failed"
    NOT_CONNECTED = "not_connected"


class StoreLinkError(RuntimeError):
    """Base class for errors raised by storelink."""

    kind: ErrorKind


class ConfigError(StoreLinkError):
    """Raised when an environment variable cannot be turned into a typed value."""

    def __init__(self, name: str, cause: str) -> None:
        super().__init__(f"Environment variable error [{name}]: {cause}")
        self.name = name
        self.cause = cause


class MissingError(ConfigError):
    kind = ErrorKind.MISSING


class InvalidFormatError(ConfigError):
    kind = ErrorKind.INVALID_FORMAT


class ConfigMismatchError(ConfigError):
    """The call site declared a default that does not fit the expected type."""

    kind = ErrorKind.CONFIG_MISMATCH


class ValidationFailedError(ConfigError):
    kind = ErrorKind.VALIDATION_FAILED


class ConnectFailedError(StoreLinkError):
    """Raised to every waiter once all connection attempts are exhausted."""

    kind = ErrorKind.CONNECT_FAILED

    def __init__(self, attempts: int, cause: BaseException) -> None:
        noun = "attempt" if attempts == 1 else "attempts"
        super().__init__(f"Failed to connect to the data store after {attempts} {noun}: {cause}")
        self.attempts = attempts
        self.cause = cause


class NotConnectedError(StoreLinkError):
    """Raised when the active connection is requested before connecting."""

    kind = ErrorKind.NOT_CONNECTED

    def __init__(self, message: str = "No active data store connection. Call connect() first.") -> None:
        super().__init__(message)


__all__ = [
    "ConfigError",
    "ConfigMismatchError",
    "ConnectFailedError",
    "ErrorKind",
    "InvalidFormatError",
    "MissingError",
    "NotConnectedError",
    "StoreLinkError",
    "ValidationFailedError",
]
