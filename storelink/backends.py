"""Data store backends used by the connection manager."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol, runtime_checkable

import asyncpg

from .options import ConnectionOptions

DisconnectListener = Callable[[], None]


class ConnectionBackendError(RuntimeError):
    """Raised when a backend cannot open or close a client."""


@runtime_checkable
class ConnectionBackend(Protocol):
    """Protocol implemented by data store backends."""

    async def open(self, options: ConnectionOptions) -> Any:
        """Open a client for the given options and return it."""

    async def close(self, client: Any) -> None:
        """Close a client previously returned by :meth:`open`."""

    def watch(self, client: Any, listener: DisconnectListener) -> Callable[[], None]:
        """Call ``listener`` when the client loses its connection; returns an unsubscribe handle."""


class AsyncpgBackend:
    """Backend that keeps an asyncpg connection pool to PostgreSQL."""

    def __init__(self, *, min_pool_size: int = 1) -> None:
        self._min_pool_size = min_pool_size
        self._watchers: dict[Any, set[DisconnectListener]] = {}

    async def open(self, options: ConnectionOptions) -> asyncpg.Pool:
        watchers: set[DisconnectListener] = set()

        def _on_terminate(_conn: object) -> None:
            for listener in tuple(watchers):
                listener()

        async def _init(conn: asyncpg.Connection) -> None:
            conn.add_termination_listener(_on_terminate)

        try:
            pool = await asyncio.wait_for(
                self._create_pool(options, _init),
                timeout=options.server_selection_timeout_ms / 1000,
            )
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to connect to {options.describe()}: {exc}") from exc
        self._watchers[pool] = watchers
        return pool

    async def close(self, client: asyncpg.Pool) -> None:
        watchers = self._watchers.pop(client, None)
        if watchers:
            watchers.clear()
        try:
            await client.close()
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to close connection pool: {exc}") from exc

    def watch(self, client: asyncpg.Pool, listener: DisconnectListener) -> Callable[[], None]:
        watchers = self._watchers.setdefault(client, set())
        watchers.add(listener)

        def _unsubscribe() -> None:
            watchers.discard(listener)

        return _unsubscribe

    async def _create_pool(
        self,
        options: ConnectionOptions,
        init: Callable[[asyncpg.Connection], Any],
    ) -> asyncpg.Pool:
        return await asyncpg.create_pool(init=init, **self.pool_kwargs(options))

    def pool_kwargs(self, options: ConnectionOptions) -> dict[str, object]:
        """Translate connection options into ``asyncpg.create_pool`` arguments."""

        kwargs: dict[str, object] = {
            "dsn": options.uri,
            "database": options.db_name,
            "min_size": min(self._min_pool_size, options.pool_size),
            "max_size": options.pool_size,
            "timeout": options.connect_timeout_ms / 1000,
            "command_timeout": options.socket_timeout_ms / 1000,
            # Idle connections stay open so termination always means a lost link.
            "max_inactive_connection_lifetime": 0,
        }
        if options.tls:
            kwargs["ssl"] = "require" if options.tls_allow_invalid_certificates else "verify-full"
        if options.read_preference == "secondaryPreferred":
            kwargs["target_session_attrs"] = "prefer-standby"
        if options.write_concern == "majority":
            kwargs["server_settings"] = {"synchronous_commit": "remote_apply"}
        return kwargs


__all__ = [
    "AsyncpgBackend",
    "ConnectionBackend",
    "ConnectionBackendError",
    "DisconnectListener",
]
