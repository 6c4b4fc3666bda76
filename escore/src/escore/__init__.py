"""
escore - Core library for Esplora wallet synchronization

Provides the wire model, domain transactions, fee estimation and merkle
proof verification. No network I/O.
"""

__version__ = "0.3.0"

from escore.errors import (
    EsploraError,
    HttpStatusError,
    InvalidConfigurationError,
    MalformedResponseError,
    MalformedWitnessHexError,
    NetworkTransientError,
    NoFeeEstimateAvailableError,
    ProofMismatchError,
    SyncCancelledError,
)
from escore.fees import FeeRate, fee_rate_for_target, parse_fee_estimates
from escore.merkle import compute_merkle_root, verify_merkle_proof
from escore.models import (
    BlockHeader,
    MerkleProof,
    OutputStatus,
    PrevOut,
    Tx,
    TxStatus,
    Vin,
    Vout,
)
from escore.transaction import BlockTime, OutPoint, Transaction, TxIn, TxOut

__all__ = [
    "BlockHeader",
    "BlockTime",
    "EsploraError",
    "FeeRate",
    "HttpStatusError",
    "InvalidConfigurationError",
    "MalformedResponseError",
    "MalformedWitnessHexError",
    "MerkleProof",
    "NetworkTransientError",
    "NoFeeEstimateAvailableError",
    "OutPoint",
    "OutputStatus",
    "PrevOut",
    "ProofMismatchError",
    "SyncCancelledError",
    "Transaction",
    "Tx",
    "TxIn",
    "TxOut",
    "TxStatus",
    "Vin",
    "Vout",
    "compute_merkle_root",
    "fee_rate_for_target",
    "parse_fee_estimates",
    "verify_merkle_proof",
]
