"""Line-delimited JSON protocol between the client library and the backend.

One message per line in each direction.

Request format:
    {"request_id": <uint>, "type": "Save",  "data": ["<group>", "<key>", "<value>"]}
    {"request_id": <uint>, "type": "Load",  "data": ["<group>", "<key>"]}
    {"request_id": <uint>, "type": "Flush"}

Response format:
    {"request_id": <uint>, "type": "Ok" | "Err" | "Object", "data": ...}

Request lines are built by hand for the three fixed shapes. The value of a
Save is already a serialized document and is nested as a string literal, so
it is escaped rather than re-encoded.
"""

import itertools
import json
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from devpersist.errors import ProtocolError
from devpersist.response import Response

_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}


class RequestType(str, Enum):
    SAVE = "Save"
    LOAD = "Load"
    FLUSH = "Flush"


OPERAND_COUNT = {RequestType.SAVE: 3, RequestType.LOAD: 2, RequestType.FLUSH: 0}


@dataclass(frozen=True)
class Request:
    request_id: int
    type: RequestType
    operands: Tuple[str, ...] = ()

    def serialize(self) -> str:
        """Build the wire line for this request (without the newline)."""
        return serialize_request(self)


class RequestIdAllocator:
    """
    Hands out strictly increasing request ids.

    Ids are never reused for the lifetime of the allocator. ``next`` is
    safe to call from any thread.
    """

    def __init__(self, start: int = 0):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)

    def new_request(self, kind: RequestType, *operands: str) -> Request:
        expected = OPERAND_COUNT[kind]
        if len(operands) != expected:
            raise ValueError(f"{kind.value} takes {expected} operands, got {len(operands)}")
        return Request(self.next(), kind, tuple(operands))


def escape(text: str) -> str:
    """Escape a string for embedding inside a JSON string literal."""
    out = []
    for char in text:
        if char in _ESCAPES:
            out.append(_ESCAPES[char])
        elif ord(char) < 0x20:
            out.append(f"\\u{ord(char):04x}")
        else:
            out.append(char)
    return "".join(out)


def serialize_request(request: Request) -> str:
    """
    Serialize request to one wire line.

    Args:
        request: Request to serialize

    Returns:
        JSON text without a trailing newline
    """
    rid = request.request_id
    if request.type is RequestType.SAVE:
        group, key, value = (escape(op) for op in request.operands)
        return (
            f'{{"request_id": {rid}, "type": "Save", '
            f'"data": ["{group}", "{key}", "{value}"]}}'
        )
    if request.type is RequestType.LOAD:
        group, key = (escape(op) for op in request.operands)
        return f'{{"request_id": {rid}, "type": "Load", "data": ["{group}", "{key}"]}}'
    return f'{{"request_id": {rid}, "type": "Flush"}}'


def deserialize_request(line: str) -> Request:
    """
    Parse a request line (backend side).

    Raises:
        ProtocolError: If the line is not a valid request envelope
    """
    try:
        message = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}", cause=e)
    if not isinstance(message, dict):
        raise ProtocolError("Request is not an object")

    request_id = message.get("request_id")
    if isinstance(request_id, bool) or not isinstance(request_id, int) or request_id < 0:
        raise ProtocolError("Missing or invalid request_id")
    try:
        kind = RequestType(message.get("type"))
    except ValueError as e:
        raise ProtocolError(f"Unknown request type: {message.get('type')}", cause=e)

    data = message.get("data") or []
    expected = OPERAND_COUNT[kind]
    if not isinstance(data, list) or len(data) != expected or not all(isinstance(d, str) for d in data):
        raise ProtocolError(f"{kind.value} expects {expected} string operands")
    return Request(request_id, kind, tuple(data))


def serialize_response(response: Response) -> bytes:
    """Serialize a response to one newline-terminated UTF-8 line."""
    return (response.to_json() + "\n").encode("utf-8")


def deserialize_response(line: str) -> Response:
    """
    Parse a response line (client side).

    Raises:
        ProtocolError: If the line is not a valid response envelope
    """
    return Response.from_json(line)


def request_id_of(line: str) -> Optional[int]:
    """Best-effort extraction of the request id from a damaged line."""
    try:
        message: Dict[str, Any] = json.loads(line)
    except json.JSONDecodeError:
        return None
    rid = message.get("request_id") if isinstance(message, dict) else None
    return rid if isinstance(rid, int) and not isinstance(rid, bool) else None
