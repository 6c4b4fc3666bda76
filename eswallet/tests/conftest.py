"""
Test configuration for eswallet tests.

FakeEsplora serves an in-memory chain through the EsploraBackend interface.
Transactions are built as real serializable transactions so their txids
survive verification.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import defaultdict

import pytest

from escore.merkle import build_merkle_proof, merkle_root_from_txids
from escore.models import BlockHeader, MerkleProof, OutputStatus, Tx, TxStatus
from escore.transaction import OutPoint, Transaction, TxIn, TxOut
from eswallet.backends.base import EsploraBackend
from eswallet.config import EsploraConfig

BLOCK_TIME_BASE = 1_700_000_000


def p2wpkh(tag: int) -> bytes:
    """Distinct P2WPKH-shaped script for a small integer tag."""
    return bytes([0x00, 0x14]) + hashlib.sha256(tag.to_bytes(4, "big")).digest()[:20]


def block_hash_for(height: int) -> str:
    return hashlib.sha256(b"block" + height.to_bytes(4, "big")).hexdigest()


class FakeEsplora(EsploraBackend):
    """Esplora-like service over an in-memory set of transactions."""

    page_size = 25

    def __init__(self) -> None:
        self.txs: dict[str, Tx] = {}
        self.history: dict[bytes, list[str]] = defaultdict(list)
        self.proofs: dict[str, MerkleProof] = {}
        self.headers: dict[str, BlockHeader] = {}
        self.fees: dict[int, float] = {}
        self.tip = 0
        self._counter = 0

        # Injected failures per method name, raised before serving
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        # Scripts whose history requests always fail
        self.broken_scripts: dict[bytes, Exception] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    # -- chain building --

    def _next_prev_txid(self) -> str:
        self._counter += 1
        return hashlib.sha256(b"funding" + self._counter.to_bytes(4, "big")).hexdigest()

    def add_tx(
        self,
        outputs: list[tuple[bytes, int]],
        spends: list[tuple[OutPoint, bytes, int]] | None = None,
        height: int | None = None,
        fee: int = 200,
    ) -> Tx:
        """
        Add a transaction paying outputs and spending (outpoint, script, value) inputs.
        Without spends it is funded from an outside transaction.
        """
        spends = spends or []
        if spends:
            inputs = [TxIn(previous_output=outpoint) for outpoint, _, _ in spends]
            prevouts = [
                {"scriptpubkey": script.hex(), "value": value} for _, script, value in spends
            ]
        else:
            inputs = [TxIn(previous_output=OutPoint(self._next_prev_txid(), 0))]
            prevouts = [{"scriptpubkey": p2wpkh(999_999).hex(), "value": 10**8}]

        transaction = Transaction(
            version=2,
            lock_time=0,
            inputs=inputs,
            outputs=[TxOut(value=value, script_pubkey=script) for script, value in outputs],
        )
        if height is None:
            status = {"confirmed": False}
        else:
            status = {
                "confirmed": True,
                "block_height": height,
                "block_hash": block_hash_for(height),
                "block_time": BLOCK_TIME_BASE + height * 600,
            }
            self.tip = max(self.tip, height)

        tx = Tx.model_validate(
            {
                "txid": transaction.txid,
                "version": transaction.version,
                "locktime": transaction.lock_time,
                "vin": [
                    {
                        "txid": txin.previous_output.txid,
                        "vout": txin.previous_output.vout,
                        "prevout": prevout,
                        "scriptsig": "",
                        "witness": [],
                        "sequence": txin.sequence,
                        "is_coinbase": False,
                    }
                    for txin, prevout in zip(inputs, prevouts)
                ],
                "vout": [
                    {"scriptpubkey": script.hex(), "value": value} for script, value in outputs
                ],
                "status": status,
                "fee": fee,
            }
        )
        self.txs[tx.txid] = tx
        scripts = [script for script, _ in outputs] + [script for _, script, _ in spends]
        for script in dict.fromkeys(scripts):
            self.history[script].append(tx.txid)
        return tx

    def seal_blocks(self) -> None:
        """Publish headers and merkle proofs for every confirmed transaction."""
        by_height: dict[int, list[str]] = defaultdict(list)
        for tx in self.txs.values():
            if tx.status.confirmed and tx.status.block_height is not None:
                by_height[tx.status.block_height].append(tx.txid)

        for height, txids in by_height.items():
            # A coinbase-like filler first so wallet txs are not alone in the block
            leaves = [hashlib.sha256(b"coinbase" + height.to_bytes(4, "big")).hexdigest()]
            leaves += sorted(txids)
            block_hash = block_hash_for(height)
            self.headers[block_hash] = BlockHeader(
                id=block_hash,
                height=height,
                merkle_root=merkle_root_from_txids(leaves),
                timestamp=BLOCK_TIME_BASE + height * 600,
            )
            for index, txid in enumerate(leaves[1:], start=1):
                self.proofs[txid] = build_merkle_proof(leaves, index, block_height=height)

    def _ordered_history(self, script: bytes) -> tuple[list[Tx], list[Tx]]:
        txs = [self.txs[txid] for txid in self.history.get(script, [])]
        mempool = [tx for tx in txs if not tx.status.confirmed]
        confirmed = sorted(
            (tx for tx in txs if tx.status.confirmed),
            key=lambda tx: tx.status.block_height or 0,
            reverse=True,
        )
        return mempool, confirmed

    async def _enter(self, method: str, *args: object) -> None:
        self.calls.append((method, args))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.failures[method]:
                raise self.failures[method].pop(0)
        finally:
            self.in_flight -= 1

    def history_calls(self) -> list[tuple]:
        return [args for method, args in self.calls if method == "fetch_history"]

    # -- EsploraBackend --

    async def fetch_history(self, script: bytes, last_seen_txid: str | None = None) -> list[Tx]:
        await self._enter("fetch_history", script, last_seen_txid)
        if script in self.broken_scripts:
            raise self.broken_scripts[script]
        mempool, confirmed = self._ordered_history(script)
        if last_seen_txid is None:
            return mempool + confirmed[: self.page_size]
        ids = [tx.txid for tx in confirmed]
        start = ids.index(last_seen_txid) + 1
        return confirmed[start : start + self.page_size]

    async def fetch_tx(self, txid: str) -> Tx | None:
        await self._enter("fetch_tx", txid)
        return self.txs.get(txid)

    async def fetch_status(self, txid: str) -> TxStatus | None:
        await self._enter("fetch_status", txid)
        tx = self.txs.get(txid)
        return None if tx is None else tx.status

    async def fetch_proof(self, txid: str) -> MerkleProof | None:
        await self._enter("fetch_proof", txid)
        return self.proofs.get(txid)

    async def fetch_output_status(self, txid: str, vout: int) -> OutputStatus | None:
        await self._enter("fetch_output_status", txid, vout)
        tx = self.txs.get(txid)
        if tx is None or vout >= len(tx.vout):
            return None
        for spender in self.txs.values():
            for index, vin in enumerate(spender.vin):
                if vin.txid == txid and vin.vout == vout:
                    return OutputStatus(
                        spent=True, txid=spender.txid, vin=index, status=spender.status
                    )
        return OutputStatus(spent=False)

    async def fetch_fee_estimates(self) -> dict[int, float]:
        await self._enter("fetch_fee_estimates")
        return dict(self.fees)

    async def fetch_block_header(self, block_hash: str) -> BlockHeader | None:
        await self._enter("fetch_block_header", block_hash)
        return self.headers.get(block_hash)

    async def fetch_tip_height(self) -> int:
        await self._enter("fetch_tip_height")
        return self.tip


@pytest.fixture
def fake_esplora() -> FakeEsplora:
    return FakeEsplora()


@pytest.fixture
def sync_config() -> EsploraConfig:
    """Config with no retry delays, independent of the environment."""
    return EsploraConfig(
        base_url="http://esplora.test/api",
        stop_gap=3,
        concurrency=2,
        retry_backoff=0,
        _env_file=None,  # type: ignore[call-arg]
    )


@pytest.fixture
def sample_mnemonic() -> str:
    """Test mnemonic (not for production use!)."""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def script_for():
    """Factory for distinct P2WPKH-shaped scripts."""
    return p2wpkh
