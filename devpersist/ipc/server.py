"""Reference backend speaking the persistence wire protocol.

A small asyncio Unix socket server that stores data with LocalStore. It
lets games exercise the remote code path on a development machine and
backs the end-to-end tests.

Usage:
    python -m devpersist.ipc.server [--socket-path PATH] [--root DIR]

    Or use the CLI:
    devpersist serve
"""

import asyncio
import logging
import os
import signal
import threading
from pathlib import Path
from typing import Optional, Set

from devpersist.config import get_socket_path
from devpersist.errors import PersistenceError, ProtocolError
from devpersist.ipc.protocol import (
    Request,
    RequestType,
    deserialize_request,
    request_id_of,
    serialize_response,
)
from devpersist.response import Response
from devpersist.storage.local import LocalStore

logger = logging.getLogger(__name__)

MAX_LINE = 1024 * 1024


class BackendServer:
    """
    Async Unix socket server for the persistence protocol.

    Connections are long-lived: each one carries any number of request
    lines and gets one response line per request.
    """

    def __init__(
        self,
        socket_path: Optional[Path] = None,
        root: Optional[Path] = None,
        store: Optional[LocalStore] = None,
    ):
        """
        Initialize backend server.

        Args:
            socket_path: Path to Unix socket (default: $DEVCADE_PATH/game.sock)
            root: Directory for saved groups (default: current directory)
            store: Pre-built store (overrides root)
        """
        self.socket_path = Path(socket_path) if socket_path else get_socket_path()
        self.store = store or LocalStore(root or Path("."))

        self.server: Optional[asyncio.AbstractServer] = None
        self.ready = threading.Event()
        self.requests_handled = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._writers: Set[asyncio.StreamWriter] = set()

    async def serve(self, install_signal_handlers: bool = False) -> None:
        """Listen until ``shutdown`` is called (or a signal arrives)."""
        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()

        # Clean up stale socket
        if self.socket_path.exists():
            self.socket_path.unlink()
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)

        self.server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path),
            limit=MAX_LINE,
        )
        os.chmod(self.socket_path, 0o600)
        logger.info("Backend listening on %s (data in %s)", self.socket_path, self.store.root)

        if install_signal_handlers:
            for sig in (signal.SIGTERM, signal.SIGINT):
                self._loop.add_signal_handler(sig, self.shutdown)

        self.ready.set()
        try:
            await self._shutdown_event.wait()
        finally:
            await self._cleanup()

    def shutdown(self) -> None:
        """Request shutdown. Safe to call from any thread."""
        if self._loop is None or self._shutdown_event is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._shutdown_event.set)

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Serve one client connection until it disconnects."""
        logger.info("Client connected")
        self._writers.add(writer)
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    text = line.decode("utf-8").strip()
                except UnicodeDecodeError as e:
                    logger.error("Bad request: %s", e)
                    rid = request_id_of(line.decode("utf-8", errors="replace")) or 0
                    response = Response.err(f"Bad request: not valid UTF-8 ({e})", request_id=rid)
                else:
                    if not text:
                        continue
                    response = self.handle_line(text)
                writer.write(serialize_response(response))
                await writer.drain()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.warning("Client connection lost: %s", e)
        except ValueError as e:
            # StreamReader raises ValueError for over-long lines
            logger.error("Dropping client: %s", e)
        finally:
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionResetError, BrokenPipeError):
                pass
            logger.info("Client disconnected")

    def handle_line(self, line: str) -> Response:
        """Turn one request line into its response."""
        try:
            request = deserialize_request(line)
        except ProtocolError as e:
            logger.error("Bad request: %s", e.message)
            return Response.err(f"Bad request: {e.message}", request_id=request_id_of(line) or 0)
        self.requests_handled += 1
        return self.handle(request)

    def handle(self, request: Request) -> Response:
        rid = request.request_id
        try:
            if request.type is RequestType.SAVE:
                group, key, value = request.operands
                self.store.save(group, key, value)
                return Response.ok(rid)
            if request.type is RequestType.LOAD:
                group, key = request.operands
                return Response.object(self.store.load(group, key), rid)
            self.store.flush()
            return Response.ok(rid)
        except PersistenceError as e:
            if request.type is RequestType.LOAD:
                logger.debug("Load %s failed: %s", request.operands, e.message)
            else:
                logger.error("%s failed: %s", request.type.value, e.message)
            return Response.err(e.message, request_id=rid)

    async def _cleanup(self) -> None:
        """Flush data and remove the socket."""
        logger.info("Cleaning up...")
        if self.server is not None:
            self.server.close()
        for writer in list(self._writers):
            writer.close()
        if self.server is not None:
            await self.server.wait_closed()

        try:
            self.store.flush()
        except PersistenceError as e:
            logger.error("Final flush failed: %s", e.message)
        if self.socket_path.exists():
            self.socket_path.unlink()
        self.ready.clear()
        logger.info("Backend stopped")


def run_backend(socket_path: Optional[str] = None, root: Optional[str] = None) -> None:
    """
    Run the backend in the foreground until SIGINT/SIGTERM.

    Args:
        socket_path: Path to Unix socket (default: $DEVCADE_PATH/game.sock)
        root: Directory for saved groups (default: current directory)
    """
    server = BackendServer(
        socket_path=Path(socket_path) if socket_path else None,
        root=Path(root) if root else None,
    )
    asyncio.run(server.serve(install_signal_handlers=True))


if __name__ == "__main__":
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    parser = argparse.ArgumentParser(description="devpersist reference backend")
    parser.add_argument("--socket-path", help="Path to Unix socket")
    parser.add_argument("--root", help="Directory for saved groups")
    args = parser.parse_args()

    run_backend(socket_path=args.socket_path, root=args.root)
