"""Configuration management for devpersist.

Settings come from the process environment, optionally seeded from a
``.env`` file. Provides PersistenceConfig (paths, timeouts) and
RetryPolicy (connection retry behaviour).
"""

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

DEFAULT_DEVCADE_PATH = "/tmp/devcade"
SOCKET_FILE_NAME = "game.sock"
DEVCADE_HOME = Path("/home/devcade")


@dataclass
class RetryPolicy:
    """
    How the connection manager retries a failed connect.

    The default retries forever on a fixed one second interval. Setting
    ``max_retries`` bounds the loop, ``backoff`` > 1 grows the interval
    exponentially up to ``max_interval``.
    """
    interval: float = 1.0
    max_retries: Optional[int] = None
    backoff: float = 1.0
    max_interval: float = 30.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        if self.backoff <= 1.0:
            return self.interval
        return min(self.interval * (self.backoff ** (attempt - 1)), self.max_interval)

    def exhausted(self, attempt: int) -> bool:
        return self.max_retries is not None and attempt > self.max_retries


@dataclass
class PersistenceConfig:
    devcade_path: Path = Path(DEFAULT_DEVCADE_PATH)
    local_path: Path = Path(".")
    request_timeout: float = 10.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    force_remote: bool = False
    force_local: bool = False

    @property
    def socket_path(self) -> Path:
        return get_socket_path(self.devcade_path)


def get_socket_path(devcade_path: Optional[Path] = None) -> Path:
    """Get the backend socket path, ``$DEVCADE_PATH/game.sock``."""
    base = devcade_path or Path(os.environ.get("DEVCADE_PATH") or DEFAULT_DEVCADE_PATH)
    return Path(base) / SOCKET_FILE_NAME


def on_devcade(home: Path = DEVCADE_HOME) -> bool:
    """Check whether we are running on a devcade cabinet."""
    return home.is_dir()


def _get_bool(raw: Mapping[str, Optional[str]], key: str, default: bool = False) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_float(raw: Mapping[str, Optional[str]], key: str, default: float) -> float:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid value for {key}: {value!r} (expected a number)")


def _get_optional_int(raw: Mapping[str, Optional[str]], key: str) -> Optional[int]:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(float(value))
    except ValueError:
        raise ValueError(f"Invalid value for {key}: {value!r} (expected an integer)")


def load_env(env_file: Optional[Path] = None) -> Dict[str, Optional[str]]:
    """
    Merge values from a ``.env`` file with the process environment.

    The process environment wins over the file. The file defaults to
    ``.env`` in the current directory and can be moved with
    ``DEVPERSIST_ENV_FILE``.
    """
    if env_file is None:
        env_file = Path(os.environ.get("DEVPERSIST_ENV_FILE", ".env"))

    raw: Dict[str, Optional[str]] = {}
    if env_file.exists():
        raw.update(dotenv_values(env_file))
    raw.update(os.environ)
    return raw


def load_config(
    env: Optional[Mapping[str, Optional[str]]] = None,
    env_file: Optional[Path] = None,
) -> PersistenceConfig:
    """
    Build a PersistenceConfig from environment values.
    Raises ValueError if a numeric setting cannot be parsed.
    """
    raw = env if env is not None else load_env(env_file)

    devcade_path = raw.get("DEVCADE_PATH") or DEFAULT_DEVCADE_PATH
    local_path = raw.get("DEVPERSIST_LOCAL_PATH") or "."

    retry = RetryPolicy(
        interval=_get_float(raw, "DEVPERSIST_RETRY_INTERVAL", 1.0),
        max_retries=_get_optional_int(raw, "DEVPERSIST_MAX_RETRIES"),
        backoff=_get_float(raw, "DEVPERSIST_RETRY_BACKOFF", 1.0),
        max_interval=_get_float(raw, "DEVPERSIST_RETRY_MAX_INTERVAL", 30.0),
    )

    return PersistenceConfig(
        devcade_path=Path(devcade_path),
        local_path=Path(local_path),
        request_timeout=_get_float(raw, "DEVPERSIST_REQUEST_TIMEOUT", 10.0),
        retry=retry,
        force_remote=_get_bool(raw, "DEVPERSIST_FORCE_REMOTE"),
        force_local=_get_bool(raw, "DEVPERSIST_FORCE_LOCAL"),
    )
