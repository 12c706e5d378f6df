"""Tests for the JSON serialization strategy."""

import unittest
from dataclasses import dataclass
from typing import Any, List, Optional

from devpersist.errors import SerializationError
from devpersist.serialization import JsonStrategy


@dataclass
class Settings:
    volume: float
    muted: bool = False


class TestJsonStrategy(unittest.TestCase):
    def setUp(self):
        self.strategy = JsonStrategy()

    def test_encode_primitives(self):
        self.assertEqual(self.strategy.encode(42), "42")
        self.assertEqual(self.strategy.encode("hi"), '"hi"')
        self.assertEqual(self.strategy.encode([1, "a"]), '[1, "a"]')

    def test_encode_dataclass(self):
        self.assertEqual(
            self.strategy.encode(Settings(0.5)), '{"volume": 0.5, "muted": false}'
        )

    def test_encode_unserializable_raises(self):
        with self.assertRaises(SerializationError):
            self.strategy.encode(object())

    def test_decode_dataclass(self):
        self.assertEqual(
            self.strategy.decode('{"volume": 1, "muted": true}', Settings),
            Settings(1, True),
        )

    def test_int_widens_to_float(self):
        self.assertEqual(self.strategy.decode("3", float), 3.0)

    def test_bool_is_not_an_int(self):
        with self.assertRaises(SerializationError):
            self.strategy.decode("true", int)

    def test_any_returns_raw_json(self):
        self.assertEqual(self.strategy.decode('{"x": [1]}', Any), {"x": [1]})

    def test_unions_pass_through(self):
        self.assertIsNone(self.strategy.decode("null", Optional[int]))

    def test_list_items_are_checked(self):
        with self.assertRaises(SerializationError):
            self.strategy.decode('[1, "two"]', List[int])

    def test_invalid_json(self):
        with self.assertRaises(SerializationError) as context:
            self.strategy.decode("{", dict)
        self.assertIsNotNone(context.exception.cause)

    def test_missing_dataclass_field(self):
        with self.assertRaises(SerializationError):
            self.strategy.decode('{"muted": true}', Settings)


if __name__ == "__main__":
    unittest.main()
