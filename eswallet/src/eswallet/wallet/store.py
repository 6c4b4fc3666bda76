"""
Wallet persistence.

The store is written only in whole scan batches. UTXOs and balances are
derived from stored transactions on every read, so a spend discovered in a
later batch never leaves stale state behind.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from loguru import logger

from escore.transaction import OutPoint
from eswallet.wallet.models import (
    KeychainKind,
    LocalUtxo,
    ScriptInfo,
    SyncBatch,
    TransactionDetails,
)


class WalletStore(ABC):
    """Abstract wallet store. Implementations must apply commit_batch atomically."""

    @abstractmethod
    def commit_batch(self, batch: SyncBatch) -> None:
        """Persist every script and transaction of a batch, or none of them."""

    @abstractmethod
    def get_script(self, script: bytes) -> ScriptInfo | None:
        pass

    @abstractmethod
    def list_scripts(self, kind: KeychainKind | None = None) -> list[ScriptInfo]:
        pass

    @abstractmethod
    def get_transaction(self, txid: str) -> TransactionDetails | None:
        pass

    @abstractmethod
    def list_transactions(self) -> list[TransactionDetails]:
        pass

    @abstractmethod
    def last_active_index(self, kind: KeychainKind) -> int | None:
        """Highest index on the branch with at least one transaction."""

    @abstractmethod
    def list_unspent(self) -> list[LocalUtxo]:
        pass

    def get_balance(self) -> int:
        """Total value of unspent wallet outputs, in satoshis."""
        return sum(utxo.value for utxo in self.list_unspent())


class MemoryWalletStore(WalletStore):
    """In-memory store guarded by a lock; commits replace entries idempotently."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scripts: dict[bytes, ScriptInfo] = {}
        self._transactions: dict[str, TransactionDetails] = {}
        self._last_active: dict[KeychainKind, int] = {}

    def commit_batch(self, batch: SyncBatch) -> None:
        used = batch.used_indexes
        with self._lock:
            self._scripts.update({info.script: info for info in batch.scripts})
            self._transactions.update(batch.transactions)
            if used:
                current = self._last_active.get(batch.keychain, -1)
                self._last_active[batch.keychain] = max(current, used[-1])
        logger.debug(
            f"Committed {batch.keychain.name.lower()} batch {batch.start_index}-"
            f"{batch.end_index - 1}: {len(batch.transactions)} tx(s)"
        )

    def get_script(self, script: bytes) -> ScriptInfo | None:
        with self._lock:
            return self._scripts.get(script)

    def list_scripts(self, kind: KeychainKind | None = None) -> list[ScriptInfo]:
        with self._lock:
            scripts = list(self._scripts.values())
        if kind is not None:
            scripts = [s for s in scripts if s.keychain == kind]
        return sorted(scripts, key=lambda s: (s.keychain, s.index))

    def get_transaction(self, txid: str) -> TransactionDetails | None:
        with self._lock:
            return self._transactions.get(txid)

    def list_transactions(self) -> list[TransactionDetails]:
        """Confirmed transactions by height, then unconfirmed, ties by txid."""
        with self._lock:
            transactions = list(self._transactions.values())

        def sort_key(details: TransactionDetails) -> tuple[int, int, str]:
            if details.confirmation_time is None:
                return (1, 0, details.txid)
            return (0, details.confirmation_time.height, details.txid)

        return sorted(transactions, key=sort_key)

    def last_active_index(self, kind: KeychainKind) -> int | None:
        with self._lock:
            return self._last_active.get(kind)

    def list_unspent(self) -> list[LocalUtxo]:
        with self._lock:
            scripts = dict(self._scripts)
            transactions = list(self._transactions.values())

        spent: set[OutPoint] = set()
        for details in transactions:
            if details.transaction.is_coinbase():
                continue
            for txin in details.transaction.inputs:
                spent.add(txin.previous_output)

        utxos = []
        for details in transactions:
            for vout, txout in enumerate(details.transaction.outputs):
                info = scripts.get(txout.script_pubkey)
                if info is None:
                    continue
                outpoint = OutPoint(txid=details.txid, vout=vout)
                if outpoint in spent:
                    continue
                utxos.append(
                    LocalUtxo(
                        outpoint=outpoint,
                        txout=txout,
                        keychain=info.keychain,
                        index=info.index,
                        confirmation_time=details.confirmation_time,
                    )
                )
        return sorted(utxos, key=lambda u: (u.outpoint.txid, u.outpoint.vout))
