"""Connection management for the backend socket.

The manager opens a Unix stream socket to the backend on a background
thread, retrying according to its RetryPolicy, and hands the connected
socket to a callback (normally ``Correlator.attach``).
"""

import logging
import socket
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from devpersist.config import RetryPolicy

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


def _unix_socket() -> socket.socket:
    return socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)


class ConnectionManager:
    """
    Owns the duplex stream to the backend.

    ``start`` launches the connect loop on a daemon thread. The loop keeps
    trying until it connects, the retry budget runs out (state FAILED) or
    ``close`` is called (state CLOSED).
    """

    def __init__(
        self,
        socket_path: Path,
        retry: Optional[RetryPolicy] = None,
        on_connected: Optional[Callable[[socket.socket], None]] = None,
        socket_factory: Callable[[], socket.socket] = _unix_socket,
    ):
        """
        Initialize manager.

        Args:
            socket_path: Path to the backend's Unix socket
            retry: Retry policy (default: every second, forever)
            on_connected: Called with the connected socket before the
                manager reports CONNECTED
            socket_factory: Creates unconnected sockets
        """
        self.socket_path = Path(socket_path)
        self.retry = retry or RetryPolicy()
        self.on_connected = on_connected
        self.socket_factory = socket_factory

        self.attempts = 0
        self._state = ConnectionState.DISCONNECTED
        self._sock: Optional[socket.socket] = None
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._settled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                return
            previous, self._state = self._state, state
        if previous is not state:
            logger.info("Connection %s -> %s", previous.value, state.value)
        if state in (ConnectionState.CONNECTED, ConnectionState.FAILED, ConnectionState.CLOSED):
            self._settled.set()

    def start(self) -> None:
        """Start the connect loop in the background."""
        if self._thread is not None:
            raise RuntimeError("Connection manager already started")
        self._thread = threading.Thread(
            target=self._run, name="devpersist-connect", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        while not self._closed.is_set():
            self.attempts += 1
            sock = self.try_open()
            if sock is not None:
                self._handoff(sock)
                return

            if self.retry.exhausted(self.attempts):
                logger.error(
                    "Giving up on %s after %d attempts", self.socket_path, self.attempts
                )
                self._set_state(ConnectionState.FAILED)
                return

            delay = self.retry.delay(self.attempts)
            logger.warning(
                "Could not connect to %s, retrying in %.1fs... (is the backend running?)",
                self.socket_path,
                delay,
            )
            self._closed.wait(delay)

    def try_open(self) -> Optional[socket.socket]:
        """Make a single connection attempt. Returns None on failure."""
        logger.debug("Trying to open socket @ %s", self.socket_path)
        sock = self.socket_factory()
        try:
            sock.connect(str(self.socket_path))
        except OSError as e:
            logger.debug("Failed to open socket: %s", e)
            sock.close()
            return None
        return sock

    def _handoff(self, sock: socket.socket) -> None:
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                sock.close()
                return
            self._sock = sock
        if self.on_connected is not None:
            self.on_connected(sock)
        self._set_state(ConnectionState.CONNECTED)

    def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the connect loop settles.

        Returns True if connected, False on failure, close or timeout.
        """
        self._settled.wait(timeout)
        return self.connected

    def close(self) -> None:
        """Stop retrying and shut the socket down."""
        with self._lock:
            sock, self._sock = self._sock, None
            self._state = ConnectionState.CLOSED
        self._closed.set()
        self._settled.set()
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()
        logger.info("Connection to %s closed", self.socket_path)
