"""
Esplora Wallet CLI - Sync HD wallets and query transactions against an Esplora server.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import typer
from loguru import logger
from pydantic import ValidationError

from escore.constants import SATS_PER_BTC
from escore.errors import EsploraError
from escore.fees import fee_rate_for_target
from eswallet.backends.esplora import create_backend
from eswallet.config import EsploraConfig
from eswallet.pipeline import FetchPipeline
from eswallet.verifier import TxVerifier

app = typer.Typer(
    name="es-wallet",
    help="Esplora wallet synchronization",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


@app.callback()
def main(
    ctx: typer.Context,
    base_url: str = typer.Option(
        None, "--base-url", "-u", envvar="ESPLORA_BASE_URL", help="Esplora API base URL"
    ),
    stop_gap: int = typer.Option(20, "--stop-gap", "-g", envvar="ESPLORA_STOP_GAP"),
    concurrency: int = typer.Option(4, "--concurrency", "-c", envvar="ESPLORA_CONCURRENCY"),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", envvar="ESPLORA_TIMEOUT", help="Request timeout in seconds"
    ),
    proxy: str | None = typer.Option(None, "--proxy", envvar="ESPLORA_PROXY"),
    blocking: bool = typer.Option(
        False, "--blocking", help="Use the blocking HTTP transport (worker threads)"
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l", envvar="ESPLORA_LOG_LEVEL"),
) -> None:
    setup_logging(log_level)
    ctx.obj = {
        "base_url": base_url,
        "stop_gap": stop_gap,
        "concurrency": concurrency,
        "timeout": timeout,
        "proxy": proxy,
        "blocking": blocking,
        "log_level": log_level,
    }


def _build_config(ctx: typer.Context, **extra: Any) -> EsploraConfig:
    options = dict(ctx.obj or {})
    if not options.get("base_url"):
        logger.error("Esplora URL required. Use --base-url or ESPLORA_BASE_URL env var")
        raise typer.Exit(1)
    options.update(extra)
    try:
        return EsploraConfig(**{k: v for k, v in options.items() if v is not None})
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(1)


def _run(coro: Any) -> None:
    try:
        asyncio.run(coro)
    except EsploraError as e:
        logger.error(str(e))
        raise typer.Exit(1)


@app.command()
def sync(
    ctx: typer.Context,
    mnemonic: str = typer.Option(
        None, "--mnemonic", envvar="ESPLORA_MNEMONIC", help="BIP39 mnemonic"
    ),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    passphrase: str = typer.Option("", "--passphrase", envvar="ESPLORA_PASSPHRASE"),
    network: str = typer.Option("mainnet", "--network", "-n", help="Bitcoin network"),
    account: int = typer.Option(0, "--account", "-a", help="BIP84 account index"),
    verify_proofs: bool = typer.Option(
        False, "--verify-proofs", help="Check merkle proofs of confirmed transactions"
    ),
    verify_unspent: bool = typer.Option(
        False, "--verify-unspent", help="Ask the server about every local UTXO"
    ),
) -> None:
    """Scan a BIP84 wallet and show balance, UTXOs and history."""
    if mnemonic_file:
        if not mnemonic_file.exists():
            logger.error(f"Mnemonic file not found: {mnemonic_file}")
            raise typer.Exit(1)
        mnemonic = mnemonic_file.read_text().strip()

    if not mnemonic:
        logger.error("Mnemonic required. Use --mnemonic, --mnemonic-file, or ESPLORA_MNEMONIC")
        raise typer.Exit(1)

    config = _build_config(
        ctx,
        network=network,
        verify_merkle_proofs=verify_proofs,
        verify_unspent=verify_unspent,
    )
    _run(_sync_wallet(config, mnemonic, passphrase, account))


async def _sync_wallet(config: EsploraConfig, mnemonic: str, passphrase: str, account: int) -> None:
    from eswallet.wallet.keychain import Bip84Keychain
    from eswallet.wallet.sync import WalletSync

    keychain = Bip84Keychain.from_mnemonic(
        mnemonic, passphrase, network=config.network, account=account
    )
    wallet = WalletSync.from_config(config, keychain)

    try:
        result = await wallet.sync()
    finally:
        await wallet.backend.close()

    store = wallet.store
    print(f"\nTotal Balance: {result.balance:,} sats ({result.balance / SATS_PER_BTC:.8f} BTC)")
    for kind, progress in result.branches.items():
        print(
            f"  {kind.name.lower():<8} scanned {progress.scanned:>5}  "
            f"last used {progress.last_used_index}"
        )

    print(f"\nUTXOs ({result.utxo_count}):")
    for utxo in store.list_unspent():
        height = utxo.confirmation_time.height if utxo.confirmation_time else "unconfirmed"
        print(
            f"  {utxo.outpoint}  {utxo.value:>15,} sats  "
            f"{utxo.keychain.name.lower()}/{utxo.index}  {height}"
        )

    print(f"\nTransactions ({result.transaction_count}):")
    for details in store.list_transactions():
        height = details.confirmation_time.height if details.confirmation_time else "unconfirmed"
        verified = " (proof verified)" if details.proof_verified else ""
        print(f"  {details.txid}  fee {details.fee:>8,}  {height}{verified}")

    for outpoint in result.remotely_spent:
        print(f"\nWarning: {outpoint} is spent on the server but not in the local history")


@app.command()
def fee(
    ctx: typer.Context,
    target: int = typer.Argument(..., help="Confirmation target in blocks"),
) -> None:
    """Fee rate for a confirmation target."""
    if target < 1:
        logger.error("Confirmation target must be positive")
        raise typer.Exit(1)
    config = _build_config(ctx)
    _run(_show_fee(config, target))


async def _show_fee(config: EsploraConfig, target: int) -> None:
    pipeline = FetchPipeline.from_config(config)
    backend = create_backend(config)
    try:
        estimates = await pipeline.run(backend.fetch_fee_estimates, label="fee-estimates")
    finally:
        await backend.close()

    rate = fee_rate_for_target(estimates, target)
    print(f"Target {target} blocks: {rate}")


@app.command("tx-status")
def tx_status(
    ctx: typer.Context,
    txid: str = typer.Argument(..., help="Transaction id"),
    verify: bool = typer.Option(False, "--verify", help="Verify the merkle inclusion proof"),
) -> None:
    """Confirmation status of a transaction."""
    config = _build_config(ctx)
    _run(_show_tx_status(config, txid, verify))


async def _show_tx_status(config: EsploraConfig, txid: str, verify: bool) -> None:
    pipeline = FetchPipeline.from_config(config)
    backend = create_backend(config)
    verifier = TxVerifier(backend, pipeline)
    try:
        status = await verifier.get_tx_status(txid)
        if status is None:
            print(f"{txid}: not found")
            return
        block_time = status.block_time_info()
        if block_time is None:
            print(f"{txid}: unconfirmed")
            return
        print(f"{txid}: confirmed at height {block_time.height} (time {block_time.timestamp})")
        if verify:
            verified = await verifier.verify_confirmation(txid)
            print("  merkle proof: " + ("valid" if verified is not None else "unavailable"))
    finally:
        await backend.close()


@app.command()
def outspend(
    ctx: typer.Context,
    txid: str = typer.Argument(..., help="Transaction id"),
    vout: int = typer.Argument(..., help="Output index"),
) -> None:
    """Spend status of a transaction output."""
    config = _build_config(ctx)
    _run(_show_outspend(config, txid, vout))


async def _show_outspend(config: EsploraConfig, txid: str, vout: int) -> None:
    pipeline = FetchPipeline.from_config(config)
    backend = create_backend(config)
    verifier = TxVerifier(backend, pipeline)
    try:
        status = await verifier.get_output_status(txid, vout)
    finally:
        await backend.close()

    if status is None:
        print(f"{txid}:{vout}: output not found")
    elif not status.spent:
        print(f"{txid}:{vout}: unspent")
    elif status.spending_outpoint() is None:
        print(f"{txid}:{vout}: spent (spender not reported)")
    else:
        print(f"{txid}:{vout}: spent by {status.spending_outpoint()}")


if __name__ == "__main__":
    app()
