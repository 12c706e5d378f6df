"""Tests for the response value model and typed extraction."""

import unittest
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from devpersist.errors import ErrorKind, NotFoundError, ProtocolError, RemoteError, SerializationError
from devpersist.response import LOCAL_REQUEST_ID, Response, ResponseType


@dataclass
class Player:
    name: str
    level: int


class TestFromJson(unittest.TestCase):
    def test_ok(self):
        response = Response.from_json('{"request_id": 3, "type": "Ok"}')
        self.assertTrue(response.is_ok())
        self.assertEqual(response.request_id, 3)
        self.assertIsNone(response.error)

    def test_err_carries_message_and_kind(self):
        response = Response.from_json('{"request_id": 4, "type": "Err", "data": "disk full"}')
        self.assertTrue(response.is_err())
        self.assertEqual(response.error, "disk full")
        self.assertIs(response.error_kind, ErrorKind.REMOTE_ERROR)

    def test_err_without_message(self):
        response = Response.from_json('{"request_id": 4, "type": "Err"}')
        self.assertEqual(response.error, "")

    def test_object(self):
        response = Response.from_json('{"request_id": 5, "type": "Object", "data": "42"}')
        self.assertTrue(response.is_object())
        self.assertEqual(response.data, "42")
        self.assertIs(response.type, ResponseType.OBJECT)

    def test_malformed_lines_raise_protocol_error(self):
        for line in [
            "garbage",
            '"just a string"',
            '{"type": "Ok"}',
            '{"request_id": "7", "type": "Ok"}',
            '{"request_id": 7, "type": "Maybe"}',
        ]:
            with self.subTest(line=line):
                with self.assertRaises(ProtocolError):
                    Response.from_json(line)

    def test_to_json_round_trip(self):
        for response in [Response.ok(1), Response.object('{"a": 1}', 2), Response.err("nope", request_id=3)]:
            with self.subTest(response=response):
                parsed = Response.from_json(response.to_json())
                self.assertEqual(parsed.type, response.type)
                self.assertEqual(parsed.data, response.data)


class TestTypedExtraction(unittest.TestCase):
    def test_numeric_targets_parse_directly(self):
        self.assertEqual(Response.object("42").get_object(int), 42)
        self.assertEqual(Response.object("2.5").get_object(float), 2.5)
        self.assertEqual(Response.object("1.10").get_object(Decimal), Decimal("1.10"))

    def test_numeric_target_from_structured_payload(self):
        self.assertEqual(Response.object(7).get_object(int), 7)

    def test_numeric_parse_failure_yields_none_and_logs(self):
        with self.assertLogs("devpersist.response", level="WARNING") as logs:
            self.assertIsNone(Response.object("forty-two").get_object(int))
        self.assertIn("Failed to deserialize", logs.output[0])

    def test_decode_raises_serialization_error(self):
        with self.assertRaises(SerializationError):
            Response.object("forty-two").decode(int)

    def test_string_payload_is_a_nested_document(self):
        self.assertEqual(Response.object('"hello"').get_object(str), "hello")
        self.assertEqual(Response.object("[1, 2, 3]").get_object(List[int]), [1, 2, 3])
        self.assertEqual(Response.object("true").get_object(bool), True)

    def test_dataclass_target(self):
        response = Response.object('{"name": "Ada", "level": 3}')
        self.assertEqual(response.get_object(Player), Player("Ada", 3))

    def test_nested_containers(self):
        response = Response.object('{"a": {"name": "A", "level": 1}}')
        self.assertEqual(response.get_object(Dict[str, Player]), {"a": Player("A", 1)})

    def test_structured_payload_is_converted(self):
        response = Response.object({"name": "Bo", "level": 9})
        self.assertEqual(response.get_object(Player), Player("Bo", 9))

    def test_wrong_type_yields_none(self):
        with self.assertLogs("devpersist.response", level="WARNING"):
            self.assertIsNone(Response.object('"text"').get_object(Player))

    def test_err_yields_none_and_logs_message(self):
        with self.assertLogs("devpersist.response", level="WARNING") as logs:
            self.assertIsNone(Response.err("boom").get_object(str))
        self.assertIn("boom", logs.output[0])

    def test_ok_yields_none(self):
        self.assertIsNone(Response.ok().get_object(str))

    def test_decode_err_raises_matching_error(self):
        with self.assertRaises(NotFoundError):
            Response.err("missing", ErrorKind.NOT_FOUND).decode(str)
        with self.assertRaises(RemoteError):
            Response.err("remote said no").decode(str)


class TestConstructors(unittest.TestCase):
    def test_local_responses_use_reserved_id(self):
        self.assertEqual(Response.ok().request_id, LOCAL_REQUEST_ID)
        self.assertEqual(LOCAL_REQUEST_ID, 2**32 - 1)

    def test_from_error(self):
        response = Response.from_error(NotFoundError("gone"), request_id=5)
        self.assertEqual(response.error, "gone")
        self.assertIs(response.error_kind, ErrorKind.NOT_FOUND)
        self.assertEqual(response.request_id, 5)


if __name__ == "__main__":
    unittest.main()
