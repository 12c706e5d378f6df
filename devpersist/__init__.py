"""Key/value persistence for devcade games.

The same Save/Load/Flush calls target either local files (while
developing) or the devcade backend process over a Unix socket.

Architecture:
- Persistence: façade choosing local or remote storage at init
- LocalStore: lazily loaded group maps, one ``.save`` file per group
- RemoteStore: ConnectionManager + Correlator over the backend socket
- Response: Ok / Err / Object result with typed decoding
"""

from devpersist.config import PersistenceConfig, RetryPolicy, load_config
from devpersist.errors import ErrorKind, PersistenceError
from devpersist.persistence import Persistence, StorageType
from devpersist.response import Response, ResponseType
from devpersist.serialization import JsonStrategy, SerializationStrategy

__version__ = "0.1.0"

__all__ = [
    "ErrorKind",
    "JsonStrategy",
    "Persistence",
    "PersistenceConfig",
    "PersistenceError",
    "Response",
    "ResponseType",
    "RetryPolicy",
    "SerializationStrategy",
    "StorageType",
    "load_config",
]
