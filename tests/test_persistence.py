"""
Tests for the Persistence façade in local and remote mode.

Remote mode runs against the reference BackendServer on a temporary Unix
socket, so both modes are checked through the same public calls.
"""

import asyncio
import json
import shutil
import tempfile
import threading
import time
import unittest
from dataclasses import dataclass
from pathlib import Path
from unittest.mock import patch

from devpersist.config import PersistenceConfig, RetryPolicy
from devpersist.errors import ErrorKind
from devpersist.ipc.connection import ConnectionState
from devpersist.ipc.server import BackendServer
from devpersist.persistence import Persistence, StorageType, select_storage_type


@dataclass
class Profile:
    name: str
    wins: int


class BackendThread:
    """Runs a BackendServer on its own event loop thread."""

    def __init__(self, socket_path: Path, root: Path):
        self.server = BackendServer(socket_path=socket_path, root=root)
        self.thread = threading.Thread(target=asyncio.run, args=(self.server.serve(),), daemon=True)

    def start(self) -> "BackendThread":
        self.thread.start()
        if not self.server.ready.wait(5):
            raise RuntimeError("backend did not start")
        return self

    def stop(self) -> None:
        self.server.shutdown()
        self.thread.join(5)


def _config(temp_dir: Path, **overrides) -> PersistenceConfig:
    options = dict(
        devcade_path=temp_dir / "ipc",
        local_path=temp_dir / "saves",
        request_timeout=5.0,
        retry=RetryPolicy(interval=0.05),
    )
    options.update(overrides)
    return PersistenceConfig(**options)


class PersistenceContract:
    """Behaviour shared by local and remote storage."""

    store: Persistence

    def test_save_then_load(self):
        self.assertTrue(self.store.save_sync("scores", "player1", "42").is_ok())
        response = self.store.load_sync("scores", "player1")
        self.assertTrue(response.is_object())
        self.assertEqual(response.get_object(str), "42")

    def test_save_int_load_int(self):
        self.store.save_sync("scores", "player1", 42)
        self.assertEqual(self.store.load_value_sync("scores", "player1", int), 42)

    def test_dataclass_round_trip(self):
        self.store.save_sync("profiles", "ada", Profile("Ada", 7))
        self.assertEqual(self.store.load_value_sync("profiles", "ada", Profile), Profile("Ada", 7))

    def test_payload_with_quotes_survives(self):
        value = {"motto": 'say "cheese"', "path": "C:\\games"}
        self.store.save_sync("misc", "tricky", value)
        self.assertEqual(self.store.load_value_sync("misc", "tricky", dict), value)

    def test_load_missing_is_err(self):
        response = self.store.load_sync("scores", "nobody")
        self.assertTrue(response.is_err())
        with self.assertLogs("devpersist.response", level="WARNING"):
            self.assertIsNone(self.store.load_value_sync("scores", "nobody", int))

    def test_async_operations(self):
        async def scenario():
            saves = await asyncio.gather(
                *(self.store.save("async", f"k{i}", i) for i in range(10))
            )
            loads = await asyncio.gather(
                *(self.store.load_value("async", f"k{i}", int) for i in range(10))
            )
            flushed = await self.store.flush()
            return saves, loads, flushed

        saves, loads, flushed = asyncio.run(scenario())
        self.assertTrue(all(r.is_ok() for r in saves))
        self.assertEqual(loads, list(range(10)))
        self.assertTrue(flushed.is_ok())

    def test_flush_writes_group_files(self):
        self.store.save_sync("a/b", "x", "1")
        self.store.save_sync("a/c", "y", "2")
        self.assertTrue(self.store.flush_sync().is_ok())

        root = self.saves_root
        self.assertEqual(json.loads((root / "a" / "b.save").read_text()), {"x": '"1"'})
        self.assertEqual(json.loads((root / "a" / "c.save").read_text()), {"y": '"2"'})

    def test_unserializable_value_is_err(self):
        response = self.store.save_sync("bad", "k", object())
        self.assertIs(response.error_kind, ErrorKind.SERIALIZATION_ERROR)

    def test_invalid_group_is_err(self):
        for group in ["", "../outside", "a//b"]:
            with self.subTest(group=group):
                self.assertTrue(self.store.save_sync(group, "k", 1).is_err())
                self.assertTrue(self.store.load_sync(group, "k").is_err())
                response = asyncio.run(self.store.save(group, "k", 1))
                self.assertTrue(response.is_err())
                self.assertIn("Invalid group name", response.error)


class TestLocalPersistence(PersistenceContract, unittest.TestCase):
    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.store = Persistence(_config(self.temp_dir))
        self.store.init_local()
        self.saves_root = self.temp_dir / "saves"

    def tearDown(self):
        self.store.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_local_state(self):
        self.assertIs(self.store.storage_type, StorageType.LOCAL)
        self.assertTrue(self.store.initialized)
        self.assertTrue(self.store.wait_until_initialized(timeout=0))
        self.assertIsNone(self.store.state)

    def test_local_not_found_kind(self):
        response = self.store.load_sync("scores", "nobody")
        self.assertIs(response.error_kind, ErrorKind.NOT_FOUND)
        self.assertEqual(response.error, "Locally stored value not found")

    def test_scores_scenario(self):
        self.store.save_sync("scores", "player1", "42")
        self.assertEqual(self.store.load_sync("scores", "player1").data, '"42"')

    def test_set_local_path_applies_to_flush(self):
        elsewhere = self.temp_dir / "elsewhere"
        self.store.save_sync("g", "k", 1)
        self.store.set_local_path(elsewhere)
        self.store.flush_sync()
        self.assertTrue((elsewhere / "g.save").exists())


class TestRemotePersistence(PersistenceContract, unittest.TestCase):
    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        config = _config(self.temp_dir)
        self.saves_root = self.temp_dir / "backend"
        self.backend = BackendThread(config.socket_path, self.saves_root).start()
        self.store = Persistence(config)
        self.store.init_remote()
        self.assertTrue(self.store.wait_until_initialized(timeout=5))

    def tearDown(self):
        self.store.close()
        self.backend.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_remote_state(self):
        self.assertIs(self.store.storage_type, StorageType.REMOTE)
        self.assertIs(self.store.state, ConnectionState.CONNECTED)
        self.assertTrue(self.store.initialized)

    def test_remote_missing_is_remote_error(self):
        response = self.store.load_sync("scores", "nobody")
        self.assertIs(response.error_kind, ErrorKind.REMOTE_ERROR)

    def test_close_fails_later_requests(self):
        self.store.close()
        for response in (
            self.store.save_sync("g", "k", 1),
            self.store.load_sync("g", "k"),
            self.store.flush_sync(),
        ):
            self.assertIs(response.error_kind, ErrorKind.BACKEND_UNAVAILABLE)

    def test_backend_stopping_makes_requests_fail(self):
        self.backend.stop()
        correlator = self.store._remote.correlator
        deadline = time.monotonic() + 5
        while correlator.available and time.monotonic() < deadline:
            time.sleep(0.01)
        self.assertFalse(correlator.available)

        response = self.store.flush_sync()
        self.assertIs(response.error_kind, ErrorKind.BACKEND_UNAVAILABLE)
        self.assertIs(self.store.state, ConnectionState.CONNECTED)


class TestInitialization(unittest.TestCase):
    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_operations_before_init_are_not_initialized(self):
        store = Persistence(_config(self.temp_dir))
        for response in (
            store.save_sync("g", "k", 1),
            store.load_sync("g", "k"),
            store.flush_sync(),
        ):
            self.assertIs(response.error_kind, ErrorKind.NOT_INITIALIZED)
        self.assertFalse(store.wait_until_initialized(timeout=0))

    def test_init_twice_raises(self):
        store = Persistence(_config(self.temp_dir))
        store.init_local()
        with self.assertRaises(RuntimeError):
            store.init()

    def test_init_picks_local_off_devcade(self):
        store = Persistence(_config(self.temp_dir))
        with patch("devpersist.persistence.on_devcade", return_value=False):
            self.assertIs(store.init(), StorageType.LOCAL)

    def test_select_storage_type(self):
        config = _config(self.temp_dir)
        with patch("devpersist.persistence.on_devcade", return_value=True):
            self.assertIs(select_storage_type(config), StorageType.REMOTE)
            config.force_local = True
            self.assertIs(select_storage_type(config), StorageType.LOCAL)
        with patch("devpersist.persistence.on_devcade", return_value=False):
            config.force_local = False
            config.force_remote = True
            self.assertIs(select_storage_type(config), StorageType.REMOTE)

    def test_save_right_after_init_remote_is_not_initialized(self):
        config = _config(self.temp_dir)
        store = Persistence(config)
        store.init_remote()
        try:
            # No backend is listening yet
            response = store.save_sync("scores", "player1", 42)
            self.assertIs(response.error_kind, ErrorKind.NOT_INITIALIZED)
            self.assertIn(store.state, (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING))

            # The retry loop picks the backend up once it appears
            backend = BackendThread(config.socket_path, self.temp_dir / "backend").start()
            try:
                self.assertTrue(store.wait_until_initialized(timeout=5))
                self.assertTrue(store.save_sync("scores", "player1", 42).is_ok())
            finally:
                store.close()
                backend.stop()
        finally:
            store.close()

    def test_failed_connection_is_connection_unavailable(self):
        config = _config(self.temp_dir, retry=RetryPolicy(interval=0.01, max_retries=1))
        store = Persistence(config)
        with self.assertLogs("devpersist.ipc.connection", level="WARNING"):
            store.init_remote()
            self.assertFalse(store.wait_until_initialized(timeout=5))
        self.assertIs(store.state, ConnectionState.FAILED)
        response = store.load_sync("g", "k")
        self.assertIs(response.error_kind, ErrorKind.CONNECTION_UNAVAILABLE)
        store.close()

    def test_async_wait_initialized(self):
        store = Persistence(_config(self.temp_dir))
        store.init_local()
        self.assertTrue(asyncio.run(store.wait_initialized(timeout=1)))

    def test_context_manager_closes(self):
        config = _config(self.temp_dir)
        backend = BackendThread(config.socket_path, self.temp_dir / "backend").start()
        try:
            with Persistence(config) as store:
                store.init_remote()
                self.assertTrue(store.wait_until_initialized(timeout=5))
            self.assertIs(store.state, ConnectionState.CLOSED)
            self.assertIs(store.flush_sync().error_kind, ErrorKind.BACKEND_UNAVAILABLE)
        finally:
            backend.stop()


if __name__ == "__main__":
    unittest.main()
