"""
eswallet - Esplora wallet synchronization

HTTP backends, the bounded fetch pipeline, proof verification and the
gap-limited wallet scanner.
"""

__version__ = "0.3.0"

from eswallet.config import EsploraConfig, get_config
from eswallet.pipeline import FetchPipeline
from eswallet.verifier import TxVerifier

__all__ = [
    "EsploraConfig",
    "FetchPipeline",
    "TxVerifier",
    "get_config",
]
