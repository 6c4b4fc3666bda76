"""
Esplora backend implementations.

Available backends:
- AsyncEsploraBackend: non-blocking httpx transport
- BlockingEsploraBackend: blocking httpx transport, requests run in worker threads

Both implement the EsploraBackend capability interface; the scanner and
verifier depend on nothing else.
"""

from eswallet.backends.base import EsploraBackend, script_to_scripthash
from eswallet.backends.esplora import (
    AsyncEsploraBackend,
    BlockingEsploraBackend,
    create_backend,
)

__all__ = [
    "AsyncEsploraBackend",
    "BlockingEsploraBackend",
    "EsploraBackend",
    "create_backend",
    "script_to_scripthash",
]
