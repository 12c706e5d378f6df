"""Background reader that resolves pending requests."""

import logging
import threading
import time
from typing import TYPE_CHECKING, BinaryIO, Callable, Optional

from devpersist.errors import ProtocolError
from devpersist.ipc.protocol import deserialize_response, request_id_of

if TYPE_CHECKING:
    from devpersist.ipc.correlator import PendingTable

logger = logging.getLogger(__name__)


class ResponseReader(threading.Thread):
    """
    Reads response lines off a binary stream for the life of the connection.

    Each parsed response resolves (and removes) its pending entry.
    Responses nobody is waiting for are logged and dropped, as are lines
    that fail to parse. Blank lines are skipped after a short sleep.

    The thread ends only at end of stream or on a read error; ``on_exit``
    then receives the error (None for a clean end of stream).
    """

    def __init__(
        self,
        stream: BinaryIO,
        pending: "PendingTable",
        on_exit: Optional[Callable[[Optional[BaseException]], None]] = None,
        idle_sleep: float = 0.1,
    ):
        super().__init__(name="devpersist-reader", daemon=True)
        self.stream = stream
        self.pending = pending
        self.on_exit = on_exit
        self.idle_sleep = idle_sleep
        self.dropped = 0
        self._stopping = threading.Event()

    def stop(self) -> None:
        """Mark the upcoming end of stream as expected."""
        self._stopping.set()

    def run(self) -> None:
        logger.info("Starting read loop")
        error: Optional[BaseException] = None
        try:
            while True:
                line = self.stream.readline()
                if line == b"":
                    if not self._stopping.is_set():
                        logger.warning("Backend closed the connection")
                    break
                line = line.strip()
                if not line:
                    time.sleep(self.idle_sleep)
                    continue
                self._dispatch(line)
        except (OSError, ValueError) as e:
            if not self._stopping.is_set():
                logger.error("Failed to read from socket: %s", e)
                error = e
        finally:
            try:
                self.stream.close()
            except (OSError, ValueError):
                pass
            if self.on_exit is not None:
                self.on_exit(error)

    def _dispatch(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace")
        try:
            response = deserialize_response(_decode(raw))
        except ProtocolError as e:
            self.dropped += 1
            logger.error(
                "Dropping malformed response (request_id=%s): %s",
                request_id_of(line),
                e.message,
            )
            return

        if not self.pending.resolve(response):
            self.dropped += 1
            logger.warning("Got unexpected response: %s", response)


def _decode(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Response is not valid UTF-8: {e}", cause=e)
