"""Response value model.

A response is ``Ok``, ``Err(message)`` or ``Object(payload)`` together with
the id of the request it answers. Responses built locally (local storage,
client-side failures) carry ``LOCAL_REQUEST_ID``.

Wire shape:
    {"request_id": <uint>, "type": "Ok" | "Err" | "Object", "data": ...}
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Type, TypeVar

from devpersist.errors import ErrorKind, PersistenceError, ProtocolError, SerializationError
from devpersist.serialization import JsonStrategy, SerializationStrategy

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCAL_REQUEST_ID = 2**32 - 1

NUMERIC_TYPES = (int, float, Decimal)


class ResponseType(str, Enum):
    OK = "Ok"
    ERR = "Err"
    OBJECT = "Object"


@dataclass(frozen=True)
class Response:
    request_id: int
    type: ResponseType
    data: Any = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, request_id: int = LOCAL_REQUEST_ID) -> "Response":
        return cls(request_id, ResponseType.OK)

    @classmethod
    def err(
        cls,
        message: str,
        kind: ErrorKind = ErrorKind.REMOTE_ERROR,
        request_id: int = LOCAL_REQUEST_ID,
    ) -> "Response":
        return cls(request_id, ResponseType.ERR, message, kind)

    @classmethod
    def from_error(cls, error: PersistenceError, request_id: int = LOCAL_REQUEST_ID) -> "Response":
        return cls.err(error.message, error.kind, request_id)

    @classmethod
    def object(cls, payload: Any, request_id: int = LOCAL_REQUEST_ID) -> "Response":
        return cls(request_id, ResponseType.OBJECT, payload)

    def is_ok(self) -> bool:
        return self.type is ResponseType.OK

    def is_err(self) -> bool:
        return self.type is ResponseType.ERR

    def is_object(self) -> bool:
        return self.type is ResponseType.OBJECT

    @property
    def error(self) -> Optional[str]:
        if not self.is_err():
            return None
        return "" if self.data is None else str(self.data)

    def decode(self, target: Type[T], strategy: Optional[SerializationStrategy] = None) -> T:
        """
        Decode an ``Object`` payload into ``target``.

        Numeric targets parse the payload text with the type's own
        constructor. Everything else goes through the strategy: string
        payloads are decoded as serialized documents, structured payloads
        are converted directly.

        Raises:
            PersistenceError: for non-object responses
            SerializationError: if the payload does not fit ``target``
        """
        if self.is_err():
            raise _error_for(self.error_kind or ErrorKind.REMOTE_ERROR, self.error or "")
        if not self.is_object():
            raise SerializationError("Response carries no object")

        if target in NUMERIC_TYPES:
            text = self.data if isinstance(self.data, str) else json.dumps(self.data)
            try:
                return target(text.strip())  # type: ignore[call-arg]
            except (ValueError, InvalidOperation) as e:
                raise SerializationError(
                    f"Cannot parse {text!r} as {target.__name__}", cause=e
                )

        strategy = strategy or JsonStrategy()
        if isinstance(self.data, str):
            return strategy.decode(self.data, target)
        return strategy.convert(self.data, target)

    def get_object(
        self, target: Type[T], strategy: Optional[SerializationStrategy] = None
    ) -> Optional[T]:
        """Like ``decode`` but yields None (and logs) instead of raising."""
        if self.is_err():
            logger.warning(
                "Tried to get object from error response%s",
                f": {self.error}" if self.error else "",
            )
            return None
        if not self.is_object():
            return None
        try:
            return self.decode(target, strategy)
        except SerializationError as e:
            logger.warning("Failed to deserialize object: %s", e.message)
            return None

    @classmethod
    def from_json(cls, line: str) -> "Response":
        """
        Parse one wire line.

        Raises:
            ProtocolError: if the line is not a valid response envelope
        """
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON in response: {e}", cause=e)
        if not isinstance(message, dict):
            raise ProtocolError(f"Response is not an object: {line!r}")

        request_id = message.get("request_id")
        if isinstance(request_id, bool) or not isinstance(request_id, int) or request_id < 0:
            raise ProtocolError(f"Missing or invalid request_id in response: {line!r}")
        try:
            response_type = ResponseType(message.get("type"))
        except ValueError as e:
            raise ProtocolError(f"Unknown response type in {line!r}", cause=e)
        if response_type is ResponseType.ERR and message.get("data") is None:
            message["data"] = ""

        data = message.get("data")
        kind = ErrorKind.REMOTE_ERROR if response_type is ResponseType.ERR else None
        return cls(request_id, response_type, data, kind)

    def to_json(self) -> str:
        message = {"request_id": self.request_id, "type": self.type.value}
        if self.type is not ResponseType.OK:
            message["data"] = self.data
        return json.dumps(message)

    def __str__(self) -> str:
        if self.is_err():
            return f"Err({self.error!r}) [id={self.request_id}]"
        if self.is_object():
            return f"Object({self.data!r}) [id={self.request_id}]"
        return f"Ok [id={self.request_id}]"


def _error_for(kind: ErrorKind, message: str) -> PersistenceError:
    for cls in PersistenceError.__subclasses__():
        if cls.kind is kind:
            return cls(message)
    return PersistenceError(message)
