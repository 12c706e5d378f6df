"""Local filesystem storage.

Each group is one JSON file at ``<root>/<group>.save`` holding the whole
key -> serialized value map. Groups are loaded lazily on first touch and
then live in memory; the file is only written again by ``flush``.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Union

from devpersist.errors import NotFoundError, SerializationError, StorageError

logger = logging.getLogger(__name__)

SAVE_SUFFIX = ".save"


def _check_group(group: str) -> None:
    parts = group.split("/")
    if not group or any(part in ("", ".", "..") for part in parts):
        raise StorageError(f"Invalid group name: {group!r}")


class LocalStore:
    """
    In-memory cache of group maps backed by one file per group.

    Thread safety: all access goes through a single re-entrant lock, so
    save/load/flush may be called from any thread.
    """

    def __init__(self, root: Union[str, Path] = "."):
        self._root = Path(root)
        self._groups: Dict[str, Dict[str, str]] = {}
        self._lock = threading.RLock()

    @property
    def root(self) -> Path:
        return self._root

    @root.setter
    def root(self, path: Union[str, Path]) -> None:
        with self._lock:
            self._root = Path(path)

    @property
    def groups(self) -> List[str]:
        with self._lock:
            return sorted(self._groups)

    def group_file(self, group: str) -> Path:
        return self._root / f"{group}{SAVE_SUFFIX}"

    def ensure_group_loaded(self, group: str) -> Dict[str, str]:
        """
        Return the in-memory map for ``group``, loading it on first use.

        Creates the group's parent directories. A missing file yields an
        empty map; an unreadable one raises SerializationError.
        """
        _check_group(group)
        with self._lock:
            if group in self._groups:
                return self._groups[group]

            path = self.group_file(group)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Cannot create {path.parent}: {e}", cause=e)
            data: Dict[str, str] = {}
            if path.exists():
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        loaded = json.load(f)
                except (OSError, json.JSONDecodeError) as e:
                    raise SerializationError(f"Cannot read {path}: {e}", cause=e)
                if not isinstance(loaded, dict):
                    raise SerializationError(f"{path} does not contain a JSON object")
                data = {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in loaded.items()}
                logger.debug("Loaded group %s (%d keys) from %s", group, len(data), path)

            self._groups[group] = data
            return data

    def save(self, group: str, key: str, value: str) -> None:
        with self._lock:
            self.ensure_group_loaded(group)[key] = value

    def load(self, group: str, key: str) -> str:
        """
        Get the serialized value stored under ``group``/``key``.

        Raises:
            NotFoundError: If the key was never saved
        """
        with self._lock:
            data = self.ensure_group_loaded(group)
            if key not in data:
                raise NotFoundError("Locally stored value not found")
            return data[key]

    def flush(self) -> List[Path]:
        """Write every resident group to disk. Returns the files written."""
        written = []
        with self._lock:
            for group, data in self._groups.items():
                path = self.group_file(group)
                try:
                    path.parent.mkdir(parents=True, exist_ok=True)
                    with open(path, "w", encoding="utf-8") as f:
                        json.dump(data, f)
                except OSError as e:
                    raise StorageError(f"Cannot write {path}: {e}", cause=e)
                written.append(path)
        logger.info("Flushed %d group(s) to %s", len(written), self._root)
        return written
