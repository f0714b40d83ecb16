"""Persistence core.

- ``filesystem``: durable JSON documents (server side)
- ``remote``: the same operations as requests over a websocket (client side)
- ``facade``: ``Storage``, the one entry point bound to either backend
"""

from marcalink.storage.base import ErrorKind, Result, Store
from marcalink.storage.facade import Storage

__all__ = ["ErrorKind", "Result", "Storage", "Store"]
