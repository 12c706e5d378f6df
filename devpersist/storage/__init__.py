from devpersist.storage.local import LocalStore
from devpersist.storage.remote import RemoteStore

__all__ = ["LocalStore", "RemoteStore"]
