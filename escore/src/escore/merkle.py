"""
Merkle inclusion proof verification.

Proofs are checked against the merkle root of the block the service claims
contains the transaction. The block header itself is trusted: there is no
proof-of-work validation here.

Hashes are given in display (big-endian) hex and combined in internal byte
order, as Bitcoin does.
"""

from __future__ import annotations

from escore.errors import ProofMismatchError
from escore.models import MerkleProof
from escore.transaction import hash256


def _internal(display_hex: str) -> bytes:
    return bytes.fromhex(display_hex)[::-1]


def _display(internal: bytes) -> str:
    return internal[::-1].hex()


def validate_proof_shape(proof: MerkleProof) -> None:
    """
    Check that pos addresses a leaf of a tree with len(merkle) levels.

    Raises:
        ValueError: If pos >= 2 ** len(merkle)
    """
    if proof.pos >= 1 << len(proof.merkle):
        raise ValueError(
            f"Merkle proof position {proof.pos} out of range for {len(proof.merkle)} levels"
        )


def compute_merkle_root(txid: str, proof: MerkleProof) -> str:
    """
    Fold the proof siblings into the transaction id to get the block root.

    At each level the parity of the running position decides the side:
    an odd position means the sibling is on the left.

    Returns:
        Computed merkle root, display hex
    """
    validate_proof_shape(proof)

    current = _internal(txid)
    position = proof.pos
    for sibling_hex in proof.merkle:
        sibling = _internal(sibling_hex)
        if position & 1:
            current = hash256(sibling + current)
        else:
            current = hash256(current + sibling)
        position >>= 1

    return _display(current)


def verify_merkle_proof(txid: str, proof: MerkleProof, expected_root: str) -> None:
    """
    Verify that txid is included under expected_root.

    Raises:
        ProofMismatchError: If the computed root differs from expected_root
        ValueError: If the proof position is out of range
    """
    computed = compute_merkle_root(txid, proof)
    if computed != expected_root.lower():
        raise ProofMismatchError(txid, computed, expected_root)


def merkle_root_from_txids(txids: list[str]) -> str:
    """
    Merkle root of a block's transaction list (display hex in and out).

    Raises:
        ValueError: If txids is empty
    """
    if not txids:
        raise ValueError("Cannot compute merkle root of an empty transaction list")

    level = [_internal(txid) for txid in txids]
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [hash256(level[i] + level[i + 1]) for i in range(0, len(level), 2)]

    return _display(level[0])


def build_merkle_proof(txids: list[str], index: int, block_height: int = 0) -> MerkleProof:
    """Build the inclusion proof for txids[index] in Esplora's format."""
    if not 0 <= index < len(txids):
        raise ValueError(f"Transaction index {index} out of range")

    level = [_internal(txid) for txid in txids]
    position = index
    siblings: list[str] = []
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        siblings.append(_display(level[position ^ 1]))
        level = [hash256(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
        position >>= 1

    return MerkleProof(block_height=block_height, merkle=siblings, pos=index)
