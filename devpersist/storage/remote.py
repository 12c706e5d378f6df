"""Remote storage through the backend process."""

import logging
from concurrent.futures import Future
from typing import Optional

from devpersist.config import PersistenceConfig
from devpersist.ipc.connection import ConnectionManager, ConnectionState
from devpersist.ipc.correlator import Correlator
from devpersist.ipc.protocol import RequestType
from devpersist.response import Response

logger = logging.getLogger(__name__)


class RemoteStore:
    """
    Save/Load/Flush against the backend socket.

    Pairs a ConnectionManager with a Correlator: once the manager connects,
    the socket is attached to the correlator and requests start flowing.
    """

    def __init__(
        self,
        config: PersistenceConfig,
        correlator: Optional[Correlator] = None,
        manager: Optional[ConnectionManager] = None,
    ):
        self.config = config
        self.correlator = correlator or Correlator(timeout=config.request_timeout)
        self.manager = manager or ConnectionManager(
            config.socket_path,
            retry=config.retry,
            on_connected=self.correlator.attach,
        )

    @property
    def initialized(self) -> bool:
        return self.manager.connected and self.correlator.attached

    @property
    def state(self) -> ConnectionState:
        return self.manager.state

    def start(self) -> None:
        logger.info("Connecting to backend at %s", self.manager.socket_path)
        self.manager.start()

    def wait_connected(self, timeout: Optional[float] = None) -> bool:
        return self.manager.wait_connected(timeout)

    def save(self, group: str, key: str, value: str) -> "Future[Response]":
        return self.correlator.request(RequestType.SAVE, group, key, value)

    def load(self, group: str, key: str) -> "Future[Response]":
        return self.correlator.request(RequestType.LOAD, group, key)

    def flush(self) -> "Future[Response]":
        return self.correlator.request(RequestType.FLUSH)

    def close(self) -> None:
        self.correlator.close()
        self.manager.close()
