"""Pluggable value serialization.

The transport only ever carries opaque strings. A strategy turns caller
values into those strings and back into a caller-chosen target type.
"""

import dataclasses
import json
from typing import Any, Optional, Protocol, Type, TypeVar, get_args, get_origin

from devpersist.errors import SerializationError

T = TypeVar("T")


class SerializationStrategy(Protocol):
    def encode(self, value: Any) -> str:
        ...

    def decode(self, payload: str, target: Type[T]) -> T:
        ...

    def convert(self, data: Any, target: Type[T]) -> T:
        ...


class JsonStrategy:
    """
    JSON serialization with light typing on the way back in.

    Dataclasses are written with ``dataclasses.asdict`` and rebuilt from
    mappings. ``list[X]`` and ``dict[str, X]`` targets convert their items.
    Plain ``object`` / ``Any`` targets return whatever JSON produced.
    """

    def __init__(self, indent: Optional[int] = None, sort_keys: bool = False):
        self.indent = indent
        self.sort_keys = sort_keys

    def encode(self, value: Any) -> str:
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            value = dataclasses.asdict(value)
        try:
            return json.dumps(value, indent=self.indent, sort_keys=self.sort_keys)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot serialize {type(value).__name__}: {e}", cause=e)

    def decode(self, payload: str, target: Type[T]) -> T:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise SerializationError(f"Invalid JSON payload: {e}", cause=e)
        return self.convert(data, target)

    def convert(self, data: Any, target: Type[T]) -> T:
        if target is Any or target is object:
            return data

        origin = get_origin(target)
        if origin is list:
            (item_type,) = get_args(target) or (Any,)
            self._check(data, list, target)
            return [self.convert(item, item_type) for item in data]  # type: ignore[return-value]
        if origin is dict:
            args = get_args(target)
            value_type = args[1] if len(args) == 2 else Any
            self._check(data, dict, target)
            return {k: self.convert(v, value_type) for k, v in data.items()}  # type: ignore[return-value]
        if origin is not None:
            # Unions, tuples and friends: hand back the raw JSON value
            return data

        if dataclasses.is_dataclass(target):
            self._check(data, dict, target)
            try:
                return target(**data)
            except TypeError as e:
                raise SerializationError(f"Cannot build {target.__name__}: {e}", cause=e)

        if target is float and isinstance(data, int) and not isinstance(data, bool):
            return float(data)  # type: ignore[return-value]
        self._check(data, target, target)
        return data

    @staticmethod
    def _check(data: Any, expected: type, target: Any) -> None:
        if expected is not bool and isinstance(data, bool):
            ok = expected is object
        else:
            ok = isinstance(data, expected)
        if not ok:
            raise SerializationError(
                f"Expected {getattr(target, '__name__', target)}, got {type(data).__name__}"
            )
