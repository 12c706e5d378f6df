"""Request/response correlation over a single duplex stream.

Many logical operations share one socket. Each request gets a fresh id and
a pending entry (a ``concurrent.futures.Future``) registered before its line
is written; the ResponseReader resolves the entry when the matching
response arrives, in whatever order the backend answers.

Every entry is resolved exactly once: by its response, by its timeout
(``TimedOut``) or by the connection going away (``BackendUnavailable``).
Failures are delivered as ``Err`` responses, never as future exceptions.
"""

import logging
import socket
import threading
from concurrent.futures import Future, InvalidStateError
from typing import Dict, List, Optional

from devpersist.errors import (
    BackendUnavailableError,
    ErrorKind,
    NotInitializedError,
    PersistenceError,
    SerializationError,
)
from devpersist.ipc.protocol import Request, RequestIdAllocator, RequestType, serialize_request
from devpersist.ipc.reader import ResponseReader
from devpersist.response import Response

logger = logging.getLogger(__name__)


def completed(response: Response) -> "Future[Response]":
    """A future that is already resolved with ``response``."""
    future: "Future[Response]" = Future()
    future.set_result(response)
    return future


class PendingTable:
    """Lock-guarded map of request id -> completion handle."""

    def __init__(self):
        self._entries: Dict[int, "Future[Response]"] = {}
        self._lock = threading.Lock()

    def register(self, request_id: int) -> "Future[Response]":
        future: "Future[Response]" = Future()
        with self._lock:
            if request_id in self._entries:
                raise ValueError(f"Request id {request_id} is already pending")
            self._entries[request_id] = future
        return future

    def discard(self, request_id: int) -> Optional["Future[Response]"]:
        with self._lock:
            return self._entries.pop(request_id, None)

    def resolve(self, response: Response) -> bool:
        """
        Resolve and remove the entry for ``response.request_id``.

        Returns False if nothing was pending under that id.
        """
        future = self.discard(response.request_id)
        if future is None:
            return False
        return _settle(future, response)

    def fail_all(self, error: PersistenceError) -> int:
        with self._lock:
            entries, self._entries = self._entries, {}
        for request_id, future in entries.items():
            _settle(future, Response.from_error(error, request_id))
        return len(entries)

    def ids(self) -> List[int]:
        with self._lock:
            return sorted(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, request_id: int) -> bool:
        with self._lock:
            return request_id in self._entries


def _settle(future: "Future[Response]", response: Response) -> bool:
    try:
        future.set_result(response)
    except InvalidStateError:
        # cancelled by the caller
        return False
    return True


class Correlator:
    """
    Sends requests and matches responses to them.

    ``attach`` binds the correlator to a connected socket and starts the
    reader. Until then every send fails with ``NotInitialized``; once the
    reader has stopped every send fails with ``BackendUnavailable``.
    """

    def __init__(
        self,
        timeout: Optional[float] = 10.0,
        pending: Optional[PendingTable] = None,
        ids: Optional[RequestIdAllocator] = None,
    ):
        """
        Args:
            timeout: Seconds before an unanswered request fails with
                TimedOut (None disables the timeout)
            pending: Pending entry table
            ids: Request id allocator
        """
        self.timeout = timeout
        self.pending = pending or PendingTable()
        self.ids = ids or RequestIdAllocator()

        self._sock: Optional[socket.socket] = None
        self._reader: Optional[ResponseReader] = None
        self._write_lock = threading.Lock()
        self._unavailable: Optional[BackendUnavailableError] = None

    @property
    def attached(self) -> bool:
        return self._sock is not None

    @property
    def available(self) -> bool:
        return self._sock is not None and self._unavailable is None

    def attach(self, sock: socket.socket) -> None:
        """Take ownership of a connected socket and start reading from it."""
        if self._sock is not None:
            raise RuntimeError("Correlator is already attached")
        stream = sock.makefile("rb")
        self._reader = ResponseReader(stream, self.pending, on_exit=self._reader_exited)
        self._sock = sock
        self._reader.start()

    def new_request(self, kind: RequestType, *operands: str) -> Request:
        return self.ids.new_request(kind, *operands)

    def send(self, request: Request) -> "Future[Response]":
        """
        Register a pending entry for ``request`` and write it to the stream.

        The entry exists before the line is written, so a fast response
        always finds it.
        """
        rid = request.request_id
        if self._unavailable is not None:
            return completed(Response.from_error(self._unavailable, rid))
        if self._sock is None:
            return completed(
                Response.from_error(
                    NotInitializedError("Persistence backend is not connected yet"), rid
                )
            )
        try:
            data = (serialize_request(request) + "\n").encode("utf-8")
        except UnicodeEncodeError as e:
            return completed(
                Response.from_error(
                    SerializationError(f"Request {rid} cannot be encoded: {e}", cause=e), rid
                )
            )

        future = self.pending.register(rid)
        if self._unavailable is not None:
            # reader went away between the check above and registration
            self.pending.fail_all(self._unavailable)
            return future
        try:
            with self._write_lock:
                sock = self._sock
                if sock is not None:
                    sock.sendall(data)
        except OSError as e:
            logger.error("Failed to write request %d: %s", rid, e)
            self._mark_unavailable(BackendUnavailableError(f"Write failed: {e}", cause=e))
            return future
        if sock is None:
            # closed before the write
            self.pending.fail_all(
                self._unavailable or BackendUnavailableError("Persistence connection closed")
            )
            return future

        if self.timeout is not None:
            self._arm_timeout(rid, future)
        return future

    def request(self, kind: RequestType, *operands: str) -> "Future[Response]":
        return self.send(self.new_request(kind, *operands))

    def _arm_timeout(self, request_id: int, future: "Future[Response]") -> None:
        timer = threading.Timer(self.timeout, self._expire, args=(request_id,))
        timer.daemon = True
        future.add_done_callback(lambda _: timer.cancel())
        timer.start()

    def _expire(self, request_id: int) -> None:
        future = self.pending.discard(request_id)
        if future is None:
            return
        logger.warning("Request %d timed out after %.1fs", request_id, self.timeout)
        _settle(
            future,
            Response.err(
                f"Request {request_id} timed out after {self.timeout}s",
                ErrorKind.TIMED_OUT,
                request_id,
            ),
        )

    def _reader_exited(self, error: Optional[BaseException]) -> None:
        reason = f"Backend connection lost: {error}" if error else "Backend connection lost"
        self._mark_unavailable(BackendUnavailableError(reason, cause=error))

    def _mark_unavailable(
        self, error: BackendUnavailableError, level: int = logging.ERROR
    ) -> None:
        if self._unavailable is None:
            self._unavailable = error
            logger.log(level, "%s", error.message)
        failed = self.pending.fail_all(self._unavailable)
        if failed:
            logger.warning("Failed %d pending request(s)", failed)

    def close(self) -> None:
        """Stop the reader and fail everything still pending."""
        if self._reader is not None:
            self._reader.stop()
        self._mark_unavailable(
            BackendUnavailableError("Persistence connection closed"), level=logging.INFO
        )
        with self._write_lock:
            sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()
