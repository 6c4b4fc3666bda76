"""
Domain transaction types and consensus serialization.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


@dataclass(frozen=True)
class OutPoint:
    """Reference to a transaction output (txid in display hex)."""

    txid: str
    vout: int

    def serialize(self) -> bytes:
        # txid is big-endian display hex, raw transactions use internal order
        return bytes.fromhex(self.txid)[::-1] + struct.pack("<I", self.vout)

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class TxIn:
    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: list[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        result = self.previous_output.serialize()
        result += encode_varint(len(self.script_sig))
        result += self.script_sig
        result += struct.pack("<I", self.sequence)
        return result


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        result = struct.pack("<Q", self.value)
        result += encode_varint(len(self.script_pubkey))
        result += self.script_pubkey
        return result


@dataclass
class Transaction:
    """
    A Bitcoin transaction in domain form.

    An empty input list is invalid on the network but representable here:
    explorers may report such objects and decoding must not fail on them.
    """

    version: int
    lock_time: int
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)

    @property
    def has_witness(self) -> bool:
        return any(txin.witness for txin in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """
        Serialize to consensus bytes.

        The segwit marker/flag and witness section are only written when
        include_witness is set and at least one input carries a witness.
        """
        segwit = include_witness and self.has_witness

        result = struct.pack("<i", self.version)
        if segwit:
            result += b"\x00\x01"

        result += encode_varint(len(self.inputs))
        for txin in self.inputs:
            result += txin.serialize()

        result += encode_varint(len(self.outputs))
        for txout in self.outputs:
            result += txout.serialize()

        if segwit:
            for txin in self.inputs:
                result += encode_varint(len(txin.witness))
                for item in txin.witness:
                    result += encode_varint(len(item)) + item

        result += struct.pack("<I", self.lock_time)
        return result

    @property
    def txid(self) -> str:
        """Transaction id: hash256 of the non-witness serialization, display hex."""
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def wtxid(self) -> str:
        return hash256(self.serialize(include_witness=True))[::-1].hex()

    @property
    def weight(self) -> int:
        base_size = len(self.serialize(include_witness=False))
        total_size = len(self.serialize(include_witness=True))
        return base_size * 3 + total_size

    @property
    def vsize(self) -> int:
        return (self.weight + 3) // 4

    def is_coinbase(self) -> bool:
        return (
            len(self.inputs) == 1
            and self.inputs[0].previous_output.txid == "00" * 32
            and self.inputs[0].previous_output.vout == 0xFFFFFFFF
        )


@dataclass(frozen=True)
class BlockTime:
    """Height and timestamp of the block that confirmed a transaction."""

    height: int
    timestamp: int
