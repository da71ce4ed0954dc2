"""Cached data store connection shared by the whole process."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from .backends import AsyncpgBackend, ConnectionBackend
from .errors import ConnectFailedError, NotConnectedError
from .options import ConnectionOptions, build_connection_options

LOG = logging.getLogger(__name__)

OptionsFactory = Callable[[], ConnectionOptions]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True, slots=True)
class DataStoreConnection:
    """Handle to a live client returned by :meth:`ConnectionManager.connect`."""

    client: Any
    options: ConnectionOptions
    connected_at: datetime
    attempts: int = 1


class ConnectionManager:
    """Owns at most one data store connection and coalesces concurrent connects.

    State lives on the instance: ``_active`` holds the live connection and
    ``_pending`` the future every caller waits on while an attempt runs. At most
    one of the two is set. Backend I/O runs on a private event loop thread so the
    client stays bound to a single loop no matter which thread or loop asks for it.
    """

    def __init__(
        self,
        backend: ConnectionBackend | None = None,
        *,
        options_factory: OptionsFactory | None = None,
        retry_delay: float = 2.0,
    ) -> None:
        self._backend = backend if backend is not None else AsyncpgBackend()
        self._options_factory = options_factory or build_connection_options
        self._retry_delay = retry_delay
        self._lock = threading.RLock()
        self._active: DataStoreConnection | None = None
        self._pending: Future[DataStoreConnection] | None = None
        self._unwatch: Callable[[], None] | None = None
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name="storelink-connection-manager",
            daemon=True,
        )
        self._loop_thread.start()

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            if self._active is not None:
                return ConnectionState.CONNECTED
            if self._pending is not None:
                return ConnectionState.CONNECTING
            return ConnectionState.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def connect(self, timeout: float | None = None) -> DataStoreConnection:
        """Return the cached connection, joining or starting an attempt if needed.

        Blocks the calling thread. ``timeout`` only bounds the wait; the attempt
        itself keeps running and later callers still share it.
        """

        self._ensure_off_loop()
        return self._begin_connect().result(timeout)

    async def connect_async(self) -> DataStoreConnection:
        """Awaitable variant of :meth:`connect` usable from any event loop."""

        future = self._begin_connect()
        # Shielded so a cancelled waiter never cancels the shared attempt.
        return await asyncio.shield(asyncio.wrap_future(future))

    def disconnect(self, timeout: float | None = None) -> None:
        """Close the active connection; a no-op unless connected."""

        self._ensure_off_loop()
        future = self._begin_disconnect()
        if future is not None:
            future.result(timeout)

    async def disconnect_async(self) -> None:
        future = self._begin_disconnect()
        if future is not None:
            # Shielded so a cancelled caller never interrupts the close.
            await asyncio.shield(asyncio.wrap_future(future))

    def get_active_connection(self) -> DataStoreConnection:
        """Return the live connection without ever starting one."""

        with self._lock:
            if self._active is None:
                raise NotConnectedError()
            return self._active

    def shutdown(self, timeout: float | None = 5.0) -> None:
        """Disconnect and stop the background loop (process exit and tests)."""

        if not self._loop_thread.is_alive():
            return
        try:
            self.disconnect(timeout)
        finally:
            self._loop.call_soon_threadsafe(self._stop_loop)
            self._loop_thread.join(timeout=1)
            if not self._loop_thread.is_alive():
                self._loop.close()

    def _begin_connect(self) -> Future[DataStoreConnection]:
        with self._lock:
            if self._active is not None:
                done: Future[DataStoreConnection] = Future()
                done.set_result(self._active)
                return done
            if self._pending is None:
                # Configuration errors surface here, before any state changes.
                options = self._options_factory()
                LOG.info("Connecting to data store %s", options.describe())
                future: Future[DataStoreConnection] = Future()
                asyncio.run_coroutine_threadsafe(self._run_attempt(options, future), self._loop)
                self._pending = future
            return self._pending

    def _begin_disconnect(self) -> Future[None] | None:
        with self._lock:
            connection = self._active
            if connection is None:
                return None
            self._active = None
            unwatch, self._unwatch = self._unwatch, None
        if unwatch is not None:
            unwatch()
        LOG.info("Disconnecting from data store %s", connection.options.describe())
        return asyncio.run_coroutine_threadsafe(self._backend.close(connection.client), self._loop)

    async def _run_attempt(self, options: ConnectionOptions, future: Future[DataStoreConnection]) -> None:
        try:
            client, attempts = await self._open_with_retry(options)
        except BaseException as exc:
            with self._lock:
                if self._pending is future:
                    self._pending = None
            future.set_exception(exc)
            if isinstance(exc, Exception):
                return
            raise
        connection = DataStoreConnection(
            client=client,
            options=options,
            connected_at=datetime.now(tz=timezone.utc),
            attempts=attempts,
        )
        with self._lock:
            self._pending = None
            self._active = connection
            self._unwatch = self._backend.watch(client, lambda: self._handle_disconnect(connection))
        LOG.info("Data store connection established (%s attempt(s))", attempts)
        future.set_result(connection)

    async def _open_with_retry(self, options: ConnectionOptions) -> tuple[Any, int]:
        max_attempts = options.max_retries
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                return await self._backend.open(options), attempt
            except Exception as exc:
                last_error = exc
                if attempt < max_attempts:
                    LOG.warning("Retry attempt %s for data store connection: %s", attempt, exc)
                    await asyncio.sleep(self._retry_delay)
        assert last_error is not None
        LOG.error("Data store connection failed after %s attempt(s): %s", max_attempts, last_error)
        raise ConnectFailedError(max_attempts, last_error) from last_error

    def _handle_disconnect(self, connection: DataStoreConnection) -> None:
        with self._lock:
            # A notice from a client that was already replaced is stale.
            if self._active is not connection:
                return
            self._active = None
            self._pending = None
            unwatch, self._unwatch = self._unwatch, None
        if unwatch is not None:
            unwatch()
        LOG.info("Data store connection lost; the next connect() starts a fresh attempt")
        asyncio.run_coroutine_threadsafe(self._discard(connection), self._loop)

    async def _discard(self, connection: DataStoreConnection) -> None:
        try:
            await self._backend.close(connection.client)
        except Exception as exc:
            LOG.warning("Failed to close lost data store client: %s", exc)

    def _stop_loop(self) -> None:
        for task in asyncio.all_tasks(self._loop):
            task.cancel()
        self._loop.call_soon(self._loop.stop)

    def _ensure_off_loop(self) -> None:
        if threading.current_thread() is self._loop_thread:
            raise RuntimeError("Blocking calls are not allowed on the connection manager loop; await the async variant")


_default_lock: threading.Lock = globals().get("_default_lock") or threading.Lock()
# Looked up in globals() so importlib.reload() keeps the live manager.
_default_manager: ConnectionManager | None = globals().get("_default_manager")


def get_connection_manager() -> ConnectionManager:
    """Return the process-wide manager, creating it on first use."""

    global _default_manager
    with _default_lock:
        if _default_manager is None:
            _default_manager = ConnectionManager()
        return _default_manager


def set_connection_manager(manager: ConnectionManager | None) -> ConnectionManager | None:
    """Install ``manager`` as the process-wide manager; returns the previous one."""

    global _default_manager
    with _default_lock:
        previous, _default_manager = _default_manager, manager
    return previous


def reset_connection_manager() -> None:
    """Shut down and forget the process-wide manager."""

    previous = set_connection_manager(None)
    if previous is not None:
        previous.shutdown()


__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "DataStoreConnection",
    "get_connection_manager",
    "reset_connection_manager",
    "set_connection_manager",
]
