"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum

from escore.transaction import BlockTime, OutPoint, Transaction, TxOut


class KeychainKind(IntEnum):
    """Derivation branch: BIP44 change level."""

    EXTERNAL = 0  # receive
    INTERNAL = 1  # change


class BranchState(str, Enum):
    SCANNING = "scanning"
    GAP_EXCEEDED = "gap_exceeded"
    DONE = "done"


@dataclass(frozen=True)
class ScriptInfo:
    """A derived output script with its wallet position."""

    keychain: KeychainKind
    index: int
    script: bytes
    address: str | None = None
    path: str | None = None


@dataclass
class TransactionDetails:
    """A wallet-relevant transaction with what the service told us about it."""

    txid: str
    transaction: Transaction
    fee: int
    confirmation_time: BlockTime | None = None
    # Previous outputs as reported by the service, None for coinbase/unknown
    previous_outputs: list[TxOut | None] = field(default_factory=list)
    # Set when confirmation_time is backed by a verified merkle proof
    proof_verified: bool = False

    @property
    def confirmed(self) -> bool:
        return self.confirmation_time is not None


@dataclass(frozen=True)
class LocalUtxo:
    outpoint: OutPoint
    txout: TxOut
    keychain: KeychainKind
    index: int
    confirmation_time: BlockTime | None = None

    @property
    def value(self) -> int:
        return self.txout.value


@dataclass
class SyncBatch:
    """
    Results of one scan step on one branch: the unit of commit.

    Readers of the store never observe part of a batch.
    """

    keychain: KeychainKind
    start_index: int
    scripts: list[ScriptInfo]
    # txids per script index, in service order
    histories: dict[int, list[str]]
    transactions: dict[str, TransactionDetails]

    @property
    def used_indexes(self) -> list[int]:
        return sorted(index for index, txids in self.histories.items() if txids)

    @property
    def end_index(self) -> int:
        return self.start_index + len(self.scripts)

    def truncated(self, end_index: int) -> SyncBatch:
        """Copy of this batch limited to scripts below end_index."""
        scripts = [info for info in self.scripts if info.index < end_index]
        histories = {info.index: self.histories[info.index] for info in scripts}
        kept = {txid for txids in histories.values() for txid in txids}
        return SyncBatch(
            keychain=self.keychain,
            start_index=self.start_index,
            scripts=scripts,
            histories=histories,
            transactions={
                txid: details for txid, details in self.transactions.items() if txid in kept
            },
        )


@dataclass
class BranchProgress:
    keychain: KeychainKind
    state: BranchState = BranchState.SCANNING
    batch_start: int = 0
    # Length of the unused run ending at the last scanned index
    unused_run: int = 0
    last_used_index: int | None = None
    batches: int = 0

    @property
    def scanned(self) -> int:
        return self.batch_start


@dataclass
class SyncResult:
    branches: dict[KeychainKind, BranchProgress]
    transaction_count: int
    utxo_count: int
    balance: int
    requests: int = 0
    retries: int = 0
    # Locally unspent outputs the service reports as spent (verify_unspent)
    remotely_spent: list[OutPoint] = field(default_factory=list)
