"""Persistence façade.

One Save/Load/Flush surface over either local files or the backend
process. Every operation returns a ``Response``; check ``is_ok()`` /
``is_err()`` rather than catching exceptions.

Usage:
    store = Persistence()
    store.init()
    store.wait_until_initialized(timeout=5)

    store.save_sync("scores", "player1", 42)
    score = store.load_value_sync("scores", "player1", int)
    store.flush_sync()

    # or from a coroutine
    response = await store.save("scores", "player1", 42)
"""

import asyncio
import logging
from concurrent.futures import Future
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Type, TypeVar, Union

from devpersist.config import PersistenceConfig, load_config, on_devcade
from devpersist.errors import (
    BackendUnavailableError,
    ConnectionUnavailableError,
    NotInitializedError,
    PersistenceError,
)
from devpersist.ipc.connection import ConnectionState
from devpersist.ipc.correlator import completed
from devpersist.response import Response
from devpersist.serialization import JsonStrategy, SerializationStrategy
from devpersist.storage.local import LocalStore
from devpersist.storage.remote import RemoteStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageType(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


def select_storage_type(config: PersistenceConfig) -> StorageType:
    """Remote on devcade or when forced, local otherwise."""
    if config.force_local:
        return StorageType.LOCAL
    if config.force_remote or on_devcade():
        return StorageType.REMOTE
    return StorageType.LOCAL


class Persistence:
    """
    Session object for saving and loading game data.

    Create one per process, call ``init`` (or ``init_local`` /
    ``init_remote``) once, then use the async or ``*_sync`` operations.
    Operations issued before initialization completes return an ``Err``
    response of kind ``NotInitialized`` immediately; use
    ``wait_until_initialized`` to wait for the backend instead.
    """

    def __init__(
        self,
        config: Optional[PersistenceConfig] = None,
        strategy: Optional[SerializationStrategy] = None,
    ):
        self.config = config or load_config()
        self.strategy = strategy or JsonStrategy()
        self._storage_type: Optional[StorageType] = None
        self._local: Optional[LocalStore] = None
        self._remote: Optional[RemoteStore] = None

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def init(self) -> StorageType:
        """
        Pick a storage mode and initialize it.

        Remote when running on devcade (or forced by configuration),
        local otherwise.
        """
        if select_storage_type(self.config) is StorageType.REMOTE:
            self.init_remote()
        else:
            self.init_local()
        return self._storage_type

    def init_local(self) -> None:
        self._check_not_initialized()
        logger.info("Initializing local storage at %s", self.config.local_path)
        self._local = LocalStore(self.config.local_path)
        self._storage_type = StorageType.LOCAL

    def init_remote(self, remote: Optional[RemoteStore] = None) -> None:
        """
        Use the devcade backend, even when developing locally.

        The connection is made in the background; the call returns at once.
        """
        self._check_not_initialized()
        logger.info("Initializing remote storage")
        self._remote = remote or RemoteStore(self.config)
        self._storage_type = StorageType.REMOTE
        self._remote.start()

    def _check_not_initialized(self) -> None:
        if self._storage_type is not None:
            raise RuntimeError(
                f"Persistence already initialized ({self._storage_type.value} storage)"
            )

    def set_local_path(self, path: Union[str, Path]) -> None:
        """
        Set the local directory that groups are saved to.

        Has no effect on remote storage.
        """
        self.config.local_path = Path(path)
        if self._local is not None:
            self._local.root = path

    @property
    def storage_type(self) -> Optional[StorageType]:
        return self._storage_type

    @property
    def initialized(self) -> bool:
        if self._storage_type is StorageType.LOCAL:
            return self._local is not None
        if self._storage_type is StorageType.REMOTE:
            return self._remote.initialized
        return False

    @property
    def state(self) -> Optional[ConnectionState]:
        """Backend connection state (None for local storage)."""
        return self._remote.state if self._remote is not None else None

    def wait_until_initialized(self, timeout: Optional[float] = None) -> bool:
        """Block until initialized. Returns False on failure or timeout."""
        if self._remote is not None:
            return self._remote.wait_connected(timeout)
        return self.initialized

    async def wait_initialized(self, timeout: Optional[float] = None) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.wait_until_initialized, timeout)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _not_ready(self) -> Response:
        if self.state is ConnectionState.CLOSED:
            return Response.from_error(BackendUnavailableError("Persistence connection closed"))
        if self.state is ConnectionState.FAILED:
            return Response.from_error(
                ConnectionUnavailableError(
                    f"Could not connect to {self.config.socket_path}"
                )
            )
        return Response.from_error(
            NotInitializedError(
                "Persistence not initialized yet (call init() or wait_until_initialized())"
            )
        )

    def _dispatch(
        self,
        local: Callable[[LocalStore], Response],
        remote: Callable[[RemoteStore], "Future[Response]"],
    ) -> "Future[Response]":
        if not self.initialized:
            return completed(self._not_ready())
        if self._storage_type is StorageType.LOCAL:
            try:
                return completed(local(self._local))
            except PersistenceError as e:
                return completed(Response.from_error(e))
        return remote(self._remote)

    def _save(self, group: str, key: str, value: Any) -> "Future[Response]":
        try:
            payload = self.strategy.encode(value)
        except PersistenceError as e:
            return completed(Response.from_error(e))

        def local(store: LocalStore) -> Response:
            store.save(group, key, payload)
            return Response.ok()

        return self._dispatch(local, lambda remote: remote.save(group, key, payload))

    def _load(self, group: str, key: str) -> "Future[Response]":
        return self._dispatch(
            lambda store: Response.object(store.load(group, key)),
            lambda remote: remote.load(group, key),
        )

    def _flush(self) -> "Future[Response]":
        def local(store: LocalStore) -> Response:
            store.flush()
            return Response.ok()

        return self._dispatch(local, lambda remote: remote.flush())

    # ------------------------------------------------------------------
    # Async operations
    # ------------------------------------------------------------------

    async def save(self, group: str, key: str, value: Any) -> Response:
        """
        Save a value to local storage or the devcade backend.

        Args:
            group: Namespace for the key; slashes create sub-directories
                locally. Groups load and flush independently.
            key: Key unique within the group
            value: Value to serialize with the configured strategy

        Returns:
            Ok on success, Err otherwise
        """
        return await asyncio.wrap_future(self._save(group, key, value))

    async def load(self, group: str, key: str) -> Response:
        """
        Load a value. Returns an Object response whose payload can be
        decoded with ``get_object``, or Err (NotFound locally).
        """
        return await asyncio.wrap_future(self._load(group, key))

    async def load_value(self, group: str, key: str, target: Type[T]) -> Optional[T]:
        response = await self.load(group, key)
        return response.get_object(target, self.strategy)

    async def flush(self) -> Response:
        """Write local data to disk, or ask the backend to flush."""
        return await asyncio.wrap_future(self._flush())

    # ------------------------------------------------------------------
    # Blocking operations
    # ------------------------------------------------------------------

    def save_sync(self, group: str, key: str, value: Any) -> Response:
        """
        Blocking version of ``save``.

        Prefer issuing several ``save`` coroutines and awaiting them
        together over many blocking calls in a row.
        """
        return self._save(group, key, value).result()

    def load_sync(self, group: str, key: str) -> Response:
        return self._load(group, key).result()

    def load_value_sync(self, group: str, key: str, target: Type[T]) -> Optional[T]:
        """
        Blocking load unwrapped into ``target``.

        Errors are logged and discarded; None comes back instead.
        """
        return self.load_sync(group, key).get_object(target, self.strategy)

    def flush_sync(self) -> Response:
        return self._flush().result()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Release the backend connection. Pending and later requests fail with BackendUnavailable."""
        if self._remote is not None:
            self._remote.close()

    def __enter__(self) -> "Persistence":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
