"""Inter-process channel to the devcade backend.

- ConnectionManager: opens (and retries) the Unix socket
- Correlator: request ids, pending table, per-request timeouts
- ResponseReader: background thread resolving pending requests
- BackendServer: reference backend for local development
"""

from devpersist.ipc.connection import ConnectionManager, ConnectionState
from devpersist.ipc.correlator import Correlator, PendingTable
from devpersist.ipc.protocol import (
    Request,
    RequestIdAllocator,
    RequestType,
    deserialize_request,
    deserialize_response,
    serialize_request,
    serialize_response,
)
from devpersist.ipc.reader import ResponseReader

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "Correlator",
    "PendingTable",
    "Request",
    "RequestIdAllocator",
    "RequestType",
    "ResponseReader",
    "deserialize_request",
    "deserialize_response",
    "serialize_request",
    "serialize_response",
]
