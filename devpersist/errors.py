"""Error kinds and exceptions for the persistence layer.

Components raise ``PersistenceError`` subclasses internally. The
``Persistence`` façade turns them into ``Err`` responses so callers always
receive a result value they can inspect.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_INITIALIZED = "NotInitialized"
    CONNECTION_UNAVAILABLE = "ConnectionUnavailable"
    PROTOCOL_ERROR = "ProtocolError"
    REMOTE_ERROR = "RemoteError"
    NOT_FOUND = "NotFound"
    SERIALIZATION_ERROR = "SerializationError"
    TIMED_OUT = "TimedOut"
    BACKEND_UNAVAILABLE = "BackendUnavailable"
    STORAGE_ERROR = "StorageError"


class PersistenceError(Exception):
    """Base class for all persistence failures."""

    kind: ErrorKind = ErrorKind.REMOTE_ERROR

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value
        self.cause = cause


class NotInitializedError(PersistenceError):
    kind = ErrorKind.NOT_INITIALIZED


class ConnectionUnavailableError(PersistenceError):
    kind = ErrorKind.CONNECTION_UNAVAILABLE


class ProtocolError(PersistenceError):
    kind = ErrorKind.PROTOCOL_ERROR


class RemoteError(PersistenceError):
    kind = ErrorKind.REMOTE_ERROR


class NotFoundError(PersistenceError):
    kind = ErrorKind.NOT_FOUND


class SerializationError(PersistenceError):
    kind = ErrorKind.SERIALIZATION_ERROR


class TimedOutError(PersistenceError):
    kind = ErrorKind.TIMED_OUT


class BackendUnavailableError(PersistenceError):
    kind = ErrorKind.BACKEND_UNAVAILABLE


class StorageError(PersistenceError):
    kind = ErrorKind.STORAGE_ERROR
