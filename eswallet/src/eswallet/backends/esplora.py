"""
Esplora HTTP API blockchain backends.

Works with blockstream.info, mempool.space or a self-hosted electrs/esplora.
Two transports share the same request shaping and response handling:

- AsyncEsploraBackend: httpx.AsyncClient on the running event loop
- BlockingEsploraBackend: httpx.Client, each request run in a worker thread
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from escore.constants import TRANSIENT_STATUS_CODES
from escore.errors import HttpStatusError, MalformedResponseError, NetworkTransientError
from escore.fees import parse_fee_estimates
from escore.models import (
    BlockHeader,
    MerkleProof,
    OutputStatus,
    Tx,
    TxStatus,
    parse_model,
    parse_model_list,
)
from eswallet.backends.base import EsploraBackend, script_to_scripthash
from eswallet.config import EsploraConfig


def history_path(script: bytes, last_seen_txid: str | None = None) -> str:
    path = f"/scripthash/{script_to_scripthash(script)}/txs"
    if last_seen_txid is not None:
        path += f"/chain/{last_seen_txid}"
    return path


def _handle_response(response: httpx.Response, path: str, text: bool) -> Any | None:
    """
    Classify a response: None for 404, raise on errors, decoded body otherwise.
    """
    status = response.status_code
    if status == 404:
        logger.debug(f"Esplora {path}: not found")
        return None
    if status in TRANSIENT_STATUS_CODES or status >= 500:
        raise NetworkTransientError(f"Esplora {path} returned HTTP {status}", status_code=status)
    if status >= 400:
        detail = response.text.strip()[:200]
        raise HttpStatusError(f"Esplora {path} returned HTTP {status}: {detail}", status)

    if text:
        return response.text.strip()
    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponseError(f"Esplora {path} returned invalid JSON: {e}") from e


def _transport_error(path: str, e: httpx.HTTPError) -> NetworkTransientError:
    if isinstance(e, httpx.TimeoutException):
        return NetworkTransientError(f"Esplora {path} timed out: {e!r}")
    return NetworkTransientError(f"Esplora {path} request failed: {e!r}")


def _parse_height(body: str) -> int:
    try:
        return int(body)
    except ValueError as e:
        raise MalformedResponseError(f"Invalid tip height: {body!r}") from e


class AsyncEsploraBackend(EsploraBackend):
    """
    Esplora backend on a non-blocking httpx client.
    """

    def __init__(
        self,
        base_url: str = "https://blockstream.info/api",
        timeout: float = 30.0,
        proxy: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=timeout,
            proxy=proxy,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_config(cls, config: EsploraConfig) -> AsyncEsploraBackend:
        return cls(config.base_url, timeout=config.effective_timeout, proxy=config.proxy)

    async def _get(self, path: str, text: bool = False) -> Any | None:
        try:
            response = await self.client.get(f"{self.base_url}{path}")
        except httpx.HTTPError as e:
            raise _transport_error(path, e) from e
        return _handle_response(response, path, text)

    async def fetch_history(self, script: bytes, last_seen_txid: str | None = None) -> list[Tx]:
        data = await self._get(history_path(script, last_seen_txid))
        if data is None:
            return []
        return parse_model_list(Tx, data)

    async def fetch_tx(self, txid: str) -> Tx | None:
        data = await self._get(f"/tx/{txid}")
        return None if data is None else parse_model(Tx, data)

    async def fetch_status(self, txid: str) -> TxStatus | None:
        data = await self._get(f"/tx/{txid}/status")
        return None if data is None else parse_model(TxStatus, data)

    async def fetch_proof(self, txid: str) -> MerkleProof | None:
        data = await self._get(f"/tx/{txid}/merkle-proof")
        return None if data is None else parse_model(MerkleProof, data)

    async def fetch_output_status(self, txid: str, vout: int) -> OutputStatus | None:
        data = await self._get(f"/tx/{txid}/outspend/{vout}")
        return None if data is None else parse_model(OutputStatus, data)

    async def fetch_fee_estimates(self) -> dict[int, float]:
        data = await self._get("/fee-estimates")
        return {} if data is None else parse_fee_estimates(data)

    async def fetch_block_header(self, block_hash: str) -> BlockHeader | None:
        data = await self._get(f"/block/{block_hash}")
        return None if data is None else parse_model(BlockHeader, data)

    async def fetch_tip_height(self) -> int:
        body = await self._get("/blocks/tip/height", text=True)
        if body is None:
            raise MalformedResponseError("Esplora did not report a tip height")
        return _parse_height(body)

    async def close(self) -> None:
        await self.client.aclose()


class BlockingEsploraBackend(EsploraBackend):
    """
    Esplora backend on a blocking httpx client.

    The get_* methods block the calling thread and can be used directly
    from synchronous code. The async interface runs them in worker threads,
    so the number of threads in use is bounded by the fetch pipeline.
    """

    def __init__(
        self,
        base_url: str = "https://blockstream.info/api",
        timeout: float = 30.0,
        proxy: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            timeout=timeout,
            proxy=proxy,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_config(cls, config: EsploraConfig) -> BlockingEsploraBackend:
        return cls(config.base_url, timeout=config.effective_timeout, proxy=config.proxy)

    def _get(self, path: str, text: bool = False) -> Any | None:
        try:
            response = self.client.get(f"{self.base_url}{path}")
        except httpx.HTTPError as e:
            raise _transport_error(path, e) from e
        return _handle_response(response, path, text)

    def get_history(self, script: bytes, last_seen_txid: str | None = None) -> list[Tx]:
        data = self._get(history_path(script, last_seen_txid))
        return [] if data is None else parse_model_list(Tx, data)

    def get_tx(self, txid: str) -> Tx | None:
        data = self._get(f"/tx/{txid}")
        return None if data is None else parse_model(Tx, data)

    def get_status(self, txid: str) -> TxStatus | None:
        data = self._get(f"/tx/{txid}/status")
        return None if data is None else parse_model(TxStatus, data)

    def get_proof(self, txid: str) -> MerkleProof | None:
        data = self._get(f"/tx/{txid}/merkle-proof")
        return None if data is None else parse_model(MerkleProof, data)

    def get_output_status(self, txid: str, vout: int) -> OutputStatus | None:
        data = self._get(f"/tx/{txid}/outspend/{vout}")
        return None if data is None else parse_model(OutputStatus, data)

    def get_fee_estimates(self) -> dict[int, float]:
        data = self._get("/fee-estimates")
        return {} if data is None else parse_fee_estimates(data)

    def get_block_header(self, block_hash: str) -> BlockHeader | None:
        data = self._get(f"/block/{block_hash}")
        return None if data is None else parse_model(BlockHeader, data)

    def get_tip_height(self) -> int:
        body = self._get("/blocks/tip/height", text=True)
        if body is None:
            raise MalformedResponseError("Esplora did not report a tip height")
        return _parse_height(body)

    async def fetch_history(self, script: bytes, last_seen_txid: str | None = None) -> list[Tx]:
        return await asyncio.to_thread(self.get_history, script, last_seen_txid)

    async def fetch_tx(self, txid: str) -> Tx | None:
        return await asyncio.to_thread(self.get_tx, txid)

    async def fetch_status(self, txid: str) -> TxStatus | None:
        return await asyncio.to_thread(self.get_status, txid)

    async def fetch_proof(self, txid: str) -> MerkleProof | None:
        return await asyncio.to_thread(self.get_proof, txid)

    async def fetch_output_status(self, txid: str, vout: int) -> OutputStatus | None:
        return await asyncio.to_thread(self.get_output_status, txid, vout)

    async def fetch_fee_estimates(self) -> dict[int, float]:
        return await asyncio.to_thread(self.get_fee_estimates)

    async def fetch_block_header(self, block_hash: str) -> BlockHeader | None:
        return await asyncio.to_thread(self.get_block_header, block_hash)

    async def fetch_tip_height(self) -> int:
        return await asyncio.to_thread(self.get_tip_height)

    async def close(self) -> None:
        self.client.close()


def create_backend(config: EsploraConfig) -> EsploraBackend:
    """Instantiate the backend matching config.blocking."""
    if config.blocking:
        logger.debug(f"Using blocking Esplora transport for {config.base_url}")
        return BlockingEsploraBackend.from_config(config)
    logger.debug(f"Using async Esplora transport for {config.base_url}")
    return AsyncEsploraBackend.from_config(config)
