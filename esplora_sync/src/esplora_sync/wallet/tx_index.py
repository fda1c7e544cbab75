"""
Sync-scoped index of fetched transactions.

Script discovery fills the index; confirmation resolution and transaction
fetch read from it. One index belongs to exactly one sync run and is
dropped when the run ends.
"""

from __future__ import annotations

from collections.abc import Iterable

from esplora_sync.backends.models import EsploraTx
from esplora_sync.errors import InvariantViolation


class TransactionIndex:
    """Mapping from txid to the transaction snapshot fetched during discovery."""

    def __init__(self) -> None:
        self._txs: dict[str, EsploraTx] = {}

    def insert(self, tx: EsploraTx) -> None:
        # Last write wins: every snapshot of a txid in one run describes the same chain state
        self._txs[tx.txid] = tx

    def extend(self, txs: Iterable[EsploraTx]) -> None:
        for tx in txs:
            self.insert(tx)

    def __getitem__(self, txid: str) -> EsploraTx:
        try:
            return self._txs[txid]
        except KeyError:
            raise InvariantViolation(
                f"Transaction {txid} was requested but never returned by script discovery"
            ) from None

    def __len__(self) -> int:
        return len(self._txs)
