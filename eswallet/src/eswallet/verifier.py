"""
Confirmation status and merkle proof verification against an Esplora backend.
"""

from __future__ import annotations

from loguru import logger

from escore.errors import MalformedResponseError
from escore.merkle import verify_merkle_proof
from escore.models import MerkleProof, OutputStatus, TxStatus
from escore.transaction import BlockTime
from eswallet.backends.base import EsploraBackend
from eswallet.pipeline import FetchPipeline


class TxVerifier:
    """
    Status, proof and spend lookups for individual transactions.

    Every lookup is idempotent and goes through the fetch pipeline, so it is
    retried on transient failures and counted against the concurrency bound.
    """

    def __init__(self, backend: EsploraBackend, pipeline: FetchPipeline | None = None):
        self.backend = backend
        self.pipeline = pipeline or FetchPipeline()

    async def get_tx_status(self, txid: str) -> TxStatus | None:
        """Confirmation status; None when the txid is unknown to the service."""
        return await self.pipeline.run(self.backend.fetch_status, txid, label=f"status {txid}")

    async def get_merkle_proof(self, txid: str, block_height: int) -> MerkleProof | None:
        """
        Inclusion proof of txid in the block at block_height.

        None when the transaction is unconfirmed, unknown, or the service
        places it in a different block (e.g. after a reorg).
        """
        proof = await self.pipeline.run(self.backend.fetch_proof, txid, label=f"proof {txid}")
        if proof is None:
            return None
        if proof.block_height != block_height:
            logger.debug(
                f"Proof for {txid} is for block {proof.block_height}, expected {block_height}"
            )
            return None
        return proof

    async def get_output_status(self, txid: str, output_index: int) -> OutputStatus | None:
        """Spend status of txid:output_index; None when the output does not exist."""
        return await self.pipeline.run(
            self.backend.fetch_output_status,
            txid,
            output_index,
            label=f"outspend {txid}:{output_index}",
        )

    async def verify_inclusion(self, txid: str, block_hash: str, block_height: int) -> bool:
        """
        Check txid against the merkle root of the claimed block.

        Returns:
            False when no proof is available for that block

        Raises:
            ProofMismatchError: If the proof leads to a different root
            MalformedResponseError: If the block header is missing or
                disagrees with the claimed height, or the proof is malformed
        """
        proof = await self.get_merkle_proof(txid, block_height)
        if proof is None:
            return False

        header = await self.pipeline.run(
            self.backend.fetch_block_header, block_hash, label=f"block {block_hash}"
        )
        if header is None:
            raise MalformedResponseError(f"Block {block_hash} claimed by {txid} is unknown")
        if header.height != block_height:
            raise MalformedResponseError(
                f"Block {block_hash} is at height {header.height}, status claims {block_height}"
            )

        try:
            verify_merkle_proof(txid, proof, header.merkle_root)
        except ValueError as e:
            raise MalformedResponseError(f"Unusable merkle proof for {txid}: {e}") from e
        logger.debug(f"Merkle proof verified for {txid} in block {block_height}")
        return True

    async def verify_confirmation(self, txid: str) -> BlockTime | None:
        """
        Confirmation time of txid, backed by a verified merkle proof.

        Returns None when the transaction is unknown, unconfirmed, only
        partially reported, or no proof is available.

        Raises:
            ProofMismatchError: If the proof does not match the block
        """
        status = await self.get_tx_status(txid)
        if status is None:
            return None
        block_time = status.block_time_info()
        if block_time is None or status.block_hash is None:
            return None

        if not await self.verify_inclusion(txid, status.block_hash, block_time.height):
            return None
        return block_time
