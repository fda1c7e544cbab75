"""
esplora-sync command line interface.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Annotated, TypeVar

import typer
from loguru import logger

from esplora_sync.bitcoin import NetworkType, address_to_scriptpubkey, scriptpubkey_to_address
from esplora_sync.blockchain import EsploraBlockchain
from esplora_sync.cli_common import resolve_esplora_settings, setup_cli
from esplora_sync.errors import EsploraError
from esplora_sync.wallet.database import MemoryDatabase
from esplora_sync.wallet.models import KeychainKind

T = TypeVar("T")

app = typer.Typer(
    name="esplora-sync",
    help="Wallet history sync against an Esplora service",
    add_completion=False,
)

EsploraUrlOption = Annotated[
    str | None, typer.Option("--esplora-url", help="Esplora API base URL")
]
NetworkOption = Annotated[
    str | None,
    typer.Option("--network", help="Bitcoin network: mainnet, testnet, signet, regtest"),
]
LogLevelOption = Annotated[
    str | None, typer.Option("--log-level", "-l", help="Log level (default from settings)")
]


def main() -> None:
    """Entry point for the ``esplora-sync`` console script."""
    app()


def _make_blockchain(
    esplora_url: str | None,
    network: str | None,
    log_level: str | None,
    stop_gap: int | None = None,
) -> tuple[EsploraBlockchain, NetworkType]:
    settings = setup_cli(log_level)
    if network is not None and network not in {n.value for n in NetworkType}:
        logger.error(f"Unknown network: {network}")
        raise typer.Exit(1)
    try:
        esplora = resolve_esplora_settings(
            settings, esplora_url=esplora_url, network=network, stop_gap=stop_gap
        )
    except ValueError as e:
        logger.error(f"Invalid settings: {e}")
        raise typer.Exit(1) from e
    resolved_network = NetworkType(network) if network is not None else settings.network
    return EsploraBlockchain.from_settings(esplora), resolved_network


def _run(blockchain: EsploraBlockchain, call: Callable[[EsploraBlockchain], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with blockchain:
            return await call(blockchain)

    try:
        return asyncio.run(runner())
    except EsploraError as e:
        logger.error(f"{type(e).__name__}: {e}")
        raise typer.Exit(1) from e


@app.command()
def height(
    esplora_url: EsploraUrlOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the current chain tip height."""
    blockchain, _ = _make_blockchain(esplora_url, network, log_level)
    print(_run(blockchain, lambda b: b.get_height()))


@app.command("block-hash")
def block_hash(
    block_height: Annotated[int, typer.Argument(help="Block height", min=0)],
    esplora_url: EsploraUrlOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the hash of the block at a height."""
    blockchain, _ = _make_blockchain(esplora_url, network, log_level)
    print(_run(blockchain, lambda b: b.get_block_hash(block_height)))


@app.command()
def fee(
    target: Annotated[
        int, typer.Option("--target", "-t", help="Confirmation target in blocks", min=1)
    ] = 6,
    esplora_url: EsploraUrlOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Estimate the fee rate (sat/vB) for a confirmation target."""
    blockchain, _ = _make_blockchain(esplora_url, network, log_level)
    fee_rate = _run(blockchain, lambda b: b.estimate_fee(target))
    print(f"{fee_rate:.3f} sat/vB")


@app.command()
def tx(
    txid: Annotated[str, typer.Argument(help="Transaction id")],
    esplora_url: EsploraUrlOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Print a transaction as raw hex."""
    blockchain, _ = _make_blockchain(esplora_url, network, log_level)
    transaction = _run(blockchain, lambda b: b.get_tx(txid))
    if transaction is None:
        logger.error(f"Transaction {txid} not found")
        raise typer.Exit(1)
    print(transaction.to_hex())


@app.command()
def broadcast(
    tx_hex: Annotated[str, typer.Argument(help="Raw transaction hex")],
    esplora_url: EsploraUrlOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Broadcast a raw transaction."""
    blockchain, _ = _make_blockchain(esplora_url, network, log_level)
    print(_run(blockchain, lambda b: b.broadcast(tx_hex.strip())))


@app.command()
def sync(
    addresses: Annotated[
        list[str], typer.Option("--address", "-a", help="Receive address (repeatable, in order)")
    ],
    change_addresses: Annotated[
        list[str] | None,
        typer.Option("--change-address", "-c", help="Change address (repeatable, in order)"),
    ] = None,
    stop_gap: Annotated[
        int | None, typer.Option("--stop-gap", help="Gap limit (default from settings)", min=1)
    ] = None,
    esplora_url: EsploraUrlOption = None,
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Sync the history of a list of addresses and print it."""
    blockchain, resolved_network = _make_blockchain(esplora_url, network, log_level, stop_gap)

    database = MemoryDatabase()
    try:
        database.add_script_pubkeys(
            KeychainKind.EXTERNAL,
            [address_to_scriptpubkey(a, resolved_network) for a in addresses],
        )
        database.add_script_pubkeys(
            KeychainKind.INTERNAL,
            [address_to_scriptpubkey(a, resolved_network) for a in change_addresses or []],
        )
    except ValueError as e:
        logger.error(f"Invalid address: {e}")
        raise typer.Exit(1) from e

    _run(blockchain, lambda b: b.wallet_sync(database))

    txs = sorted(
        database.iter_txs(),
        key=lambda d: d.confirmation_time.height if d.confirmation_time else float("inf"),
    )

    print("\n" + "=" * 80)
    print("WALLET HISTORY")
    print("=" * 80)
    if not txs:
        print("No transactions found.")
    for details in txs:
        when = (
            f"height {details.confirmation_time.height}"
            if details.confirmation_time
            else "unconfirmed"
        )
        print(f"{details.txid}  {details.net:+,} sats  ({when})")
    print("-" * 80)
    for utxo in database.iter_utxos():
        if utxo.is_spent:
            continue
        address = scriptpubkey_to_address(utxo.txout.script_pubkey, resolved_network)
        print(f"UTXO {utxo.outpoint}  {utxo.txout.value:,} sats  {address}")
    print(f"Balance: {database.get_balance():,} sats")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    main()
