"""
Esplora-backed blockchain for wallet sync.

``EsploraBlockchain`` combines the Esplora client with the staged sync plan:
it discovers every transaction touching the wallet's scripts, resolves
confirmation times and full bodies from what discovery fetched, and commits
the result to the wallet database in one atomic batch.

Sync flow:
1. ScriptRequest: fetch each script's full history (bounded concurrency),
   index every transaction by txid
2. ConftimeRequest: answer from the index
3. TxRequest: answer from the index
4. Finish: commit the batch exactly once

Any fetch error aborts the sync before anything is committed. Each sync
starts from an empty index; nothing carries over between runs.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from types import TracebackType

from loguru import logger

from esplora_sync.backends.esplora import EsploraClient, convert_fee_rate
from esplora_sync.backends.models import EsploraTx
from esplora_sync.backends.retry import RateLimitRetry
from esplora_sync.bitcoin import Transaction
from esplora_sync.errors import CommitError
from esplora_sync.settings import EsploraSettings
from esplora_sync.wallet import script_sync
from esplora_sync.wallet.database import BatchUpdate, WalletDatabase
from esplora_sync.wallet.script_history import fetch_script_history
from esplora_sync.wallet.script_sync import (
    ConftimeRequest,
    Finish,
    ScriptRequest,
    SyncRequest,
    TxRequest,
)
from esplora_sync.wallet.tx_index import TransactionIndex

DEFAULT_CONCURRENCY = 4


class Capability(str, Enum):
    """Features a blockchain backend can offer to a wallet."""

    FULL_HISTORY = "full_history"  # Can sync the complete transaction history
    GET_ANY_TX = "get_any_tx"  # Can look up any transaction by id
    ACCURATE_FEES = "accurate_fees"  # Fee estimates come from the service, not heuristics


class EsploraBlockchain:
    """
    Wallet sync engine backed by an Esplora instance.

    Usage:
        blockchain = EsploraBlockchain.from_settings(get_settings().esplora)
        async with blockchain:
            await blockchain.wallet_sync(database)
    """

    def __init__(
        self,
        client: EsploraClient,
        stop_gap: int,
        concurrency: int = DEFAULT_CONCURRENCY,
        retry: RateLimitRetry | None = None,
    ):
        """
        Initialize the engine.

        Args:
            client: Esplora transport
            stop_gap: Gap limit passed to the sync plan
            concurrency: Maximum script histories fetched at once
            retry: Rate-limit retry policy (default: 7 tries, 1s doubling backoff)
        """
        if stop_gap < 1:
            raise ValueError(f"stop_gap must be positive, got {stop_gap}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self.client = client
        self.stop_gap = stop_gap
        self.concurrency = concurrency
        self.retry = retry or RateLimitRetry()

    @classmethod
    def from_settings(cls, settings: EsploraSettings) -> EsploraBlockchain:
        return cls(
            EsploraClient.from_settings(settings),
            stop_gap=settings.stop_gap,
            concurrency=settings.concurrency,
        )

    def get_capabilities(self) -> set[Capability]:
        return {Capability.FULL_HISTORY, Capability.GET_ANY_TX, Capability.ACCURATE_FEES}

    # -- Passthrough calls ----------------------------------------------------

    async def broadcast(self, tx: Transaction | str) -> str:
        return await self.client.broadcast(tx)

    async def estimate_fee(self, target: int) -> float:
        """Fee rate in sat/vB for confirmation within ``target`` blocks."""
        estimates = await self.client.get_fee_estimates()
        fee_rate = convert_fee_rate(target, estimates)
        logger.debug(f"Estimated fee for {target} blocks: {fee_rate} sat/vB")
        return fee_rate

    async def get_height(self) -> int:
        return await self.client.get_height()

    async def get_block_hash(self, height: int) -> str:
        return await self.client.get_block_hash(height)

    async def get_tx(self, txid: str) -> Transaction | None:
        tx = await self.retry(self.client.get_tx, txid)
        return tx.to_tx() if tx is not None else None

    # -- Wallet sync ----------------------------------------------------------

    async def wallet_sync(self, database: WalletDatabase) -> None:
        """
        Sync the wallet's transaction history into ``database``.

        Raises:
            EsploraError: A fetch failed; nothing was committed
            CommitError: Every fetch succeeded but the database rejected the batch
        """
        tx_index = TransactionIndex()
        request: SyncRequest = script_sync.start(database, self.stop_gap)

        while True:
            if isinstance(request, ScriptRequest):
                request = await self._satisfy_scripts(request, tx_index)
            elif isinstance(request, ConftimeRequest):
                conftimes = [tx_index[txid].confirmation_time() for txid in request.request()]
                request = request.satisfy(conftimes)
            elif isinstance(request, TxRequest):
                full_txs = []
                for txid in request.request():
                    tx = tx_index[txid]
                    full_txs.append((tx.previous_outputs(), tx.to_tx()))
                request = request.satisfy(full_txs)
            elif isinstance(request, Finish):
                batch = request.batch
                break
            else:
                raise TypeError(f"Unknown sync request: {request!r}")

        logger.info(f"Sync fetched {len(tx_index)} transactions, committing")
        self._commit(database, batch)

    async def _satisfy_scripts(
        self, request: ScriptRequest, tx_index: TransactionIndex
    ) -> SyncRequest:
        scripts = list(request.request())
        histories = await self._fetch_histories(scripts)

        satisfaction = []
        for txs in histories:
            satisfaction.append([(tx.txid, tx.status.block_height) for tx in txs])
            tx_index.extend(txs)

        logger.debug(
            f"Fetched history of {len(scripts)} {request.keychain.value} scripts "
            f"from index {request.start_index}"
        )
        return request.satisfy(satisfaction)

    async def _fetch_histories(self, scripts: list[bytes]) -> list[list[EsploraTx]]:
        """Fetch script histories concurrently, returned in ``scripts`` order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch(script: bytes) -> list[EsploraTx]:
            async with semaphore:
                return await fetch_script_history(self.client, script, self.retry)

        tasks = [asyncio.create_task(fetch(script)) for script in scripts]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _commit(self, database: WalletDatabase, batch: BatchUpdate) -> None:
        try:
            database.commit_batch(batch)
        except CommitError:
            logger.error("Wallet database rejected the sync batch")
            raise
        except Exception as e:
            logger.error(f"Failed to commit sync batch: {e}")
            raise CommitError(f"Failed to commit sync batch: {e}") from e
        logger.info(f"Committed sync batch with {len(batch)} operations")

    # -- Lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self) -> EsploraBlockchain:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
