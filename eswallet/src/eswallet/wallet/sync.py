"""
Gap-limited wallet scanner.

Each branch (external, internal) is scanned in batches of consecutive
scripts. A batch is fetched completely, then walked in index order to update
the trailing unused run. The walk stops at the index where the run reaches
stop_gap and the scripts after it are dropped, so what the scan finds does
not depend on the batch size. The kept part is committed to the store before
the branch is marked done. Both branches share one fetch pipeline.
"""

from __future__ import annotations

from loguru import logger

from escore.constants import CONFIRMED_TXS_PER_PAGE
from escore.errors import SyncCancelledError
from escore.models import Tx
from escore.transaction import OutPoint
from eswallet.backends.base import EsploraBackend, script_to_scripthash
from eswallet.backends.esplora import create_backend
from eswallet.config import EsploraConfig
from eswallet.pipeline import FetchPipeline
from eswallet.verifier import TxVerifier
from eswallet.wallet.keychain import Keychain
from eswallet.wallet.models import (
    BranchProgress,
    BranchState,
    KeychainKind,
    ScriptInfo,
    SyncBatch,
    SyncResult,
    TransactionDetails,
)
from eswallet.wallet.store import MemoryWalletStore, WalletStore


class WalletSync:
    """
    Full scan of a keychain against an Esplora backend.

    Configuration is validated on construction, before any request is made.
    Scanning the same unchanged chain twice yields the same store contents.
    """

    def __init__(
        self,
        config: EsploraConfig,
        keychain: Keychain,
        backend: EsploraBackend,
        store: WalletStore | None = None,
        pipeline: FetchPipeline | None = None,
    ):
        config.validate_for_sync()
        self.config = config
        self.keychain = keychain
        self.backend = backend
        self.store = store if store is not None else MemoryWalletStore()
        self.pipeline = pipeline or FetchPipeline.from_config(config)
        self.verifier = TxVerifier(backend, self.pipeline)

        self.stop_gap = config.stop_gap
        self.batch_size = config.effective_batch_size
        self._cancelled = False

    @classmethod
    def from_config(
        cls, config: EsploraConfig, keychain: Keychain, store: WalletStore | None = None
    ) -> WalletSync:
        """Build a sync engine with the transport selected by config."""
        config.validate_for_sync()
        return cls(config, keychain, create_backend(config), store=store)

    def cancel(self) -> None:
        """Stop scanning before the next batch. Committed batches stay in the store."""
        self._cancelled = True

    async def sync(self) -> SyncResult:
        """
        Scan both branches until each has stop_gap trailing unused scripts.

        Raises:
            SyncCancelledError: If cancel() was called during the pass
            EsploraError: Any non-transient failure, or a transient one that
                outlived its retries; batches committed so far stay valid
        """
        logger.info(
            f"Starting sync (stop_gap={self.stop_gap}, batch_size={self.batch_size}, "
            f"concurrency={self.pipeline.concurrency})"
        )
        branches = {kind: BranchProgress(keychain=kind) for kind in KeychainKind}

        try:
            await FetchPipeline.gather(
                self._scan_branch(progress) for progress in branches.values()
            )
        except SyncCancelledError:
            logger.warning("Sync cancelled")
            raise
        except Exception as e:
            logger.error(f"Sync failed: {e}")
            raise

        remotely_spent: list[OutPoint] = []
        if self.config.verify_unspent:
            remotely_spent = await self._check_unspent()

        unspent = self.store.list_unspent()
        result = SyncResult(
            branches=branches,
            transaction_count=len(self.store.list_transactions()),
            utxo_count=len(unspent),
            balance=sum(utxo.value for utxo in unspent),
            requests=self.pipeline.requests,
            retries=self.pipeline.retries,
            remotely_spent=remotely_spent,
        )
        logger.info(
            f"Sync complete: {result.transaction_count} transactions, "
            f"{result.utxo_count} UTXOs, balance {result.balance} sats "
            f"({result.requests} requests, {result.retries} retries)"
        )
        return result

    async def _scan_branch(self, progress: BranchProgress) -> None:
        kind = progress.keychain
        name = kind.name.lower()

        while progress.state == BranchState.SCANNING:
            if self._cancelled:
                raise SyncCancelledError(
                    f"Sync cancelled on {name} branch at index {progress.batch_start}"
                )

            scripts = self.keychain.scripts(kind, progress.batch_start, self.batch_size)
            if not scripts:
                logger.debug(f"{name} keychain exhausted at index {progress.batch_start}")
                progress.state = BranchState.DONE
                break

            batch = await self._fetch_batch(kind, progress.batch_start, scripts)

            for info in scripts:
                if batch.histories[info.index]:
                    progress.unused_run = 0
                    progress.last_used_index = info.index
                else:
                    progress.unused_run += 1
                if progress.unused_run >= self.stop_gap:
                    # Nothing past the gap belongs to the wallet
                    batch = batch.truncated(info.index + 1)
                    break

            if self.config.verify_merkle_proofs:
                await self._verify_proofs(batch.transactions)

            self.store.commit_batch(batch)
            progress.batches += 1
            progress.batch_start = batch.end_index

            logger.debug(
                f"{name} batch {batch.start_index}-{batch.end_index - 1}: "
                f"{len(batch.used_indexes)} used, {len(batch.transactions)} tx(s), "
                f"unused run {progress.unused_run}/{self.stop_gap}"
            )

            if progress.unused_run >= self.stop_gap:
                progress.state = BranchState.GAP_EXCEEDED
            elif len(scripts) < self.batch_size:
                # Keychain ran out inside this batch
                progress.state = BranchState.DONE

        if progress.state == BranchState.GAP_EXCEEDED:
            progress.state = BranchState.DONE
        logger.info(
            f"{name} branch done: scanned {progress.scanned} scripts, "
            f"last used index {progress.last_used_index}"
        )

    async def _fetch_batch(
        self, kind: KeychainKind, start_index: int, scripts: list[ScriptInfo]
    ) -> SyncBatch:
        """Fetch every script's history; returns only once all of them are in."""
        histories = await FetchPipeline.gather(self._fetch_history(info.script) for info in scripts)

        transactions: dict[str, TransactionDetails] = {}
        txids_by_index: dict[int, list[str]] = {}
        for info, history in zip(scripts, histories):
            txids_by_index[info.index] = [tx.txid for tx in history]
            for tx in history:
                if tx.txid not in transactions:
                    transactions[tx.txid] = self._details(tx)

        return SyncBatch(
            keychain=kind,
            start_index=start_index,
            scripts=scripts,
            histories=txids_by_index,
            transactions=transactions,
        )

    async def _fetch_history(self, script: bytes) -> list[Tx]:
        """Complete history of a script, following confirmed-page pagination."""
        label = f"history {script_to_scripthash(script)[:16]}"
        page = await self.pipeline.run(self.backend.fetch_history, script, label=label)
        history = list(page)
        while True:
            confirmed = [tx for tx in page if tx.status.confirmed]
            if len(confirmed) < CONFIRMED_TXS_PER_PAGE:
                break
            last_seen = confirmed[-1].txid
            page = await self.pipeline.run(
                self.backend.fetch_history, script, last_seen, label=f"{label} after {last_seen}"
            )
            history.extend(page)

        seen: set[str] = set()
        unique = []
        for tx in history:
            if tx.txid not in seen:
                seen.add(tx.txid)
                unique.append(tx)
        return unique

    @staticmethod
    def _details(tx: Tx) -> TransactionDetails:
        return TransactionDetails(
            txid=tx.txid,
            transaction=tx.verify_txid(),
            fee=tx.fee,
            confirmation_time=tx.confirmation_time(),
            previous_outputs=tx.previous_outputs(),
        )

    async def _verify_proofs(self, transactions: dict[str, TransactionDetails]) -> None:
        confirmed = [d for d in transactions.values() if d.confirmation_time is not None]

        async def verify(details: TransactionDetails) -> None:
            block_time = await self.verifier.verify_confirmation(details.txid)
            if block_time is None:
                logger.warning(f"No merkle proof available for {details.txid}")
                return
            details.confirmation_time = block_time
            details.proof_verified = True

        await FetchPipeline.gather(verify(d) for d in confirmed)

    async def _check_unspent(self) -> list[OutPoint]:
        utxos = self.store.list_unspent()

        async def check(outpoint: OutPoint) -> OutPoint | None:
            status = await self.verifier.get_output_status(outpoint.txid, outpoint.vout)
            if status is not None and status.spent:
                logger.warning(f"{outpoint} is unspent locally but spent by {status.txid}")
                return outpoint
            return None

        results = await FetchPipeline.gather(check(utxo.outpoint) for utxo in utxos)
        return [outpoint for outpoint in results if outpoint is not None]
