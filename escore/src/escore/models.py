"""
Wire models for Esplora JSON responses, using Pydantic for validation.

See https://github.com/Blockstream/esplora/blob/master/API.md

Unknown fields reported by the service (scriptpubkey_asm, addresses, sizes,
...) are ignored. Optional fields stay optional: callers must handle their
absence explicitly instead of relying on implicit defaults.
"""

from __future__ import annotations

import binascii
from typing import Annotated, Any, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from escore.constants import I32_MAX, I32_MIN, U32_MAX, U64_MAX
from escore.errors import MalformedResponseError, MalformedWitnessHexError
from escore.transaction import BlockTime, OutPoint, Transaction, TxIn, TxOut

Txid = Annotated[str, Field(pattern=r"^[0-9a-fA-F]{64}$")]
BlockHash = Annotated[str, Field(pattern=r"^[0-9a-fA-F]{64}$")]
HexStr = Annotated[str, Field(pattern=r"^([0-9a-fA-F]{2})*$")]
U32 = Annotated[int, Field(ge=0, le=U32_MAX)]
U64 = Annotated[int, Field(ge=0, le=U64_MAX)]

ModelT = TypeVar("ModelT", bound=BaseModel)


def _decode_hex(value: str, what: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise MalformedResponseError(f"Invalid {what} hex: {value!r}") from e


class PrevOut(BaseModel):
    value: U64
    scriptpubkey: HexStr

    def to_txout(self) -> TxOut:
        return TxOut(value=self.value, script_pubkey=_decode_hex(self.scriptpubkey, "scriptpubkey"))


class Vin(BaseModel):
    txid: Txid
    vout: U32
    # None for coinbase inputs
    prevout: PrevOut | None = None
    scriptsig: HexStr = ""
    # Kept as text here; decoded (and rejected if not hex) by witness_bytes()
    witness: list[str] = Field(default_factory=list)
    sequence: U32
    is_coinbase: bool = False

    def witness_bytes(self, input_index: int | None = None) -> list[bytes]:
        """Decode the witness stack. Every element must be valid hex."""
        stack: list[bytes] = []
        for element in self.witness:
            try:
                stack.append(binascii.unhexlify(element))
            except (binascii.Error, ValueError) as e:
                raise MalformedWitnessHexError(element, input_index) from e
        return stack


class Vout(BaseModel):
    value: U64
    scriptpubkey: HexStr

    def to_txout(self) -> TxOut:
        return TxOut(value=self.value, script_pubkey=_decode_hex(self.scriptpubkey, "scriptpubkey"))


class TxStatus(BaseModel):
    confirmed: bool
    block_height: U32 | None = None
    block_hash: BlockHash | None = None
    block_time: int | None = Field(default=None, ge=0)

    def block_time_info(self) -> BlockTime | None:
        """
        Height and timestamp, only when the status is fully confirmed.

        A status flagged confirmed but missing height or timestamp is not
        usable for confirmation-time derivation.
        """
        if self.confirmed and self.block_height is not None and self.block_time is not None:
            return BlockTime(height=self.block_height, timestamp=self.block_time)
        return None


class MerkleProof(BaseModel):
    """
    Merkle inclusion proof from /tx/:txid/merkle-proof.

    merkle lists sibling hashes leaf-to-root in display hex; pos is the
    transaction's index among the block's transactions. pos < 2**len(merkle)
    is not enforced here, the verifier checks it before use.
    """

    block_height: U32
    merkle: list[Txid]
    pos: int = Field(ge=0)


class OutputStatus(BaseModel):
    """
    Spend status of an output. The service may report spent=True without
    the spender details; that means spent with unknown detail.
    """

    spent: bool
    txid: Txid | None = None
    vin: U32 | None = None
    status: TxStatus | None = None

    def spending_outpoint(self) -> OutPoint | None:
        if self.spent and self.txid is not None and self.vin is not None:
            return OutPoint(self.txid, self.vin)
        return None


class BlockHeader(BaseModel):
    id: BlockHash
    height: U32
    merkle_root: BlockHash
    timestamp: int = Field(ge=0)
    version: int | None = None
    previousblockhash: BlockHash | None = None
    tx_count: int | None = None


class Tx(BaseModel):
    txid: Txid
    version: Annotated[int, Field(ge=I32_MIN, le=I32_MAX)]
    locktime: U32
    vin: list[Vin]
    vout: list[Vout]
    status: TxStatus
    fee: U64 = 0

    def to_transaction(self) -> Transaction:
        """Field-by-field conversion into a domain Transaction."""
        inputs = [
            TxIn(
                previous_output=OutPoint(txid=vin.txid, vout=vin.vout),
                script_sig=_decode_hex(vin.scriptsig, "scriptsig"),
                sequence=vin.sequence,
                witness=vin.witness_bytes(index),
            )
            for index, vin in enumerate(self.vin)
        ]
        outputs = [vout.to_txout() for vout in self.vout]
        return Transaction(
            version=self.version,
            lock_time=self.locktime,
            inputs=inputs,
            outputs=outputs,
        )

    def confirmation_time(self) -> BlockTime | None:
        return self.status.block_time_info()

    def previous_outputs(self) -> list[TxOut | None]:
        """One entry per input; None for coinbase or when prevout was not supplied."""
        return [vin.prevout.to_txout() if vin.prevout is not None else None for vin in self.vin]

    def verify_txid(self) -> Transaction:
        """
        Convert and check that the reported txid matches the transaction body.

        Returns:
            The domain transaction

        Raises:
            MalformedResponseError: If the recomputed txid differs
        """
        tx = self.to_transaction()
        computed = tx.txid
        if computed != self.txid.lower():
            raise MalformedResponseError(
                f"Transaction body hashes to {computed}, service reported {self.txid}"
            )
        return tx


def parse_model(model: type[ModelT], data: Any) -> ModelT:
    """Validate decoded JSON into a wire model."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(f"Invalid {model.__name__} response: {e}") from e


def parse_model_list(model: type[ModelT], data: Any) -> list[ModelT]:
    """Validate a decoded JSON array into a list of wire models."""
    try:
        return TypeAdapter(list[model]).validate_python(data)  # type: ignore[valid-type]
    except ValidationError as e:
        raise MalformedResponseError(f"Invalid {model.__name__} list response: {e}") from e
