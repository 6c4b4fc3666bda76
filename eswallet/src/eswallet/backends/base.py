"""
Base interface to an Esplora-style block explorer.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

from escore.models import BlockHeader, MerkleProof, OutputStatus, Tx, TxStatus


def script_to_scripthash(script: bytes) -> str:
    """Esplora script hash: SHA256 of the script, byte-reversed hex."""
    return hashlib.sha256(script).digest()[::-1].hex()


class EsploraBackend(ABC):
    """
    Read-only capability interface to an Esplora service.

    Implementations differ only in transport (non-blocking or blocking).
    Conventions shared by every implementation:

    - a resource the service does not know (404) is None or an empty list
    - timeouts, connection errors, 5xx and 429 raise NetworkTransientError
    - other 4xx responses raise HttpStatusError
    - undecodable bodies raise MalformedResponseError

    Implementations never retry; the fetch pipeline owns retry policy.
    """

    @abstractmethod
    async def fetch_history(self, script: bytes, last_seen_txid: str | None = None) -> list[Tx]:
        """
        Get one page of transaction history for a script.

        Without last_seen_txid: mempool transactions plus the newest
        confirmed page. With it: the confirmed page after that txid.
        """

    @abstractmethod
    async def fetch_tx(self, txid: str) -> Tx | None:
        """Get transaction by txid"""

    @abstractmethod
    async def fetch_status(self, txid: str) -> TxStatus | None:
        """Get confirmation status of a transaction"""

    @abstractmethod
    async def fetch_proof(self, txid: str) -> MerkleProof | None:
        """Get merkle inclusion proof for a confirmed transaction"""

    @abstractmethod
    async def fetch_output_status(self, txid: str, vout: int) -> OutputStatus | None:
        """Get spend status of an output"""

    @abstractmethod
    async def fetch_fee_estimates(self) -> dict[int, float]:
        """Get fee estimates as {confirmation target: sat/vB}"""

    @abstractmethod
    async def fetch_block_header(self, block_hash: str) -> BlockHeader | None:
        """Get block header summary (height, timestamp, merkle root)"""

    @abstractmethod
    async def fetch_tip_height(self) -> int:
        """Get current blockchain height"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
