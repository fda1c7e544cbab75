"""
Wallet database interface and in-memory implementation.

The sync engine reads the wallet's cached scripts and known transactions
through ``WalletDatabase`` and writes back exactly one ``BatchUpdate`` per
successful sync. ``commit_batch`` must be atomic: readers observe either
the state before the batch or the state after it, never a mix.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from esplora_sync.bitcoin import OutPoint
from esplora_sync.errors import CommitError
from esplora_sync.wallet.models import KeychainKind, LocalUtxo, TransactionDetails


@dataclass
class BatchUpdate:
    """Accumulated result of a sync, applied atomically by ``commit_batch``."""

    transactions: dict[str, TransactionDetails] = field(default_factory=dict)
    deleted_txids: set[str] = field(default_factory=set)
    utxos: dict[OutPoint, LocalUtxo] = field(default_factory=dict)
    last_indexes: dict[KeychainKind, int] = field(default_factory=dict)

    def set_tx(self, details: TransactionDetails) -> None:
        self.deleted_txids.discard(details.txid)
        self.transactions[details.txid] = details

    def del_tx(self, txid: str) -> None:
        self.transactions.pop(txid, None)
        self.deleted_txids.add(txid)

    def set_utxo(self, utxo: LocalUtxo) -> None:
        self.utxos[utxo.outpoint] = utxo

    def set_last_index(self, keychain: KeychainKind, index: int) -> None:
        self.last_indexes[keychain] = index

    def __len__(self) -> int:
        """Number of write operations carried by the batch."""
        return (
            len(self.transactions)
            + len(self.deleted_txids)
            + len(self.utxos)
            + len(self.last_indexes)
        )


class WalletDatabase(Protocol):
    """Read view and commit point the sync engine needs from a wallet database."""

    def iter_script_pubkeys(self, keychain: KeychainKind) -> list[bytes]: ...

    def get_path_from_script_pubkey(self, script: bytes) -> tuple[KeychainKind, int] | None: ...

    def get_tx(self, txid: str) -> TransactionDetails | None: ...

    def iter_txs(self) -> list[TransactionDetails]: ...

    def iter_utxos(self) -> list[LocalUtxo]: ...

    def get_last_index(self, keychain: KeychainKind) -> int | None: ...

    def commit_batch(self, batch: BatchUpdate) -> None: ...


class MemoryDatabase:
    """
    In-memory wallet database.

    Thread-safety: This class is NOT thread-safe. Commits are atomic with
    respect to readers in the same event loop because the new state is
    built on copies and swapped in with plain attribute assignments.
    """

    def __init__(self) -> None:
        self._scripts: dict[KeychainKind, list[bytes]] = {kind: [] for kind in KeychainKind}
        self._paths: dict[bytes, tuple[KeychainKind, int]] = {}
        self._txs: dict[str, TransactionDetails] = {}
        self._utxos: dict[OutPoint, LocalUtxo] = {}
        self._last_index: dict[KeychainKind, int] = {}

    # -- Script cache ---------------------------------------------------------

    def add_script_pubkeys(self, keychain: KeychainKind, scripts: Iterable[bytes]) -> None:
        """Append derived scripts to a keychain's cache, in derivation order."""
        cache = self._scripts[keychain]
        for script in scripts:
            if script in self._paths:
                raise ValueError(f"Script {script.hex()} is already cached")
            self._paths[script] = (keychain, len(cache))
            cache.append(script)

    def iter_script_pubkeys(self, keychain: KeychainKind) -> list[bytes]:
        return list(self._scripts[keychain])

    def get_path_from_script_pubkey(self, script: bytes) -> tuple[KeychainKind, int] | None:
        return self._paths.get(script)

    # -- Reads ----------------------------------------------------------------

    def get_tx(self, txid: str) -> TransactionDetails | None:
        return self._txs.get(txid)

    def iter_txs(self) -> list[TransactionDetails]:
        return list(self._txs.values())

    def iter_utxos(self) -> list[LocalUtxo]:
        return list(self._utxos.values())

    def get_last_index(self, keychain: KeychainKind) -> int | None:
        return self._last_index.get(keychain)

    def get_balance(self) -> int:
        """Sum of unspent wallet outputs, in satoshis."""
        return sum(utxo.txout.value for utxo in self._utxos.values() if not utxo.is_spent)

    # -- Commit ---------------------------------------------------------------

    def commit_batch(self, batch: BatchUpdate) -> None:
        """
        Apply a batch atomically.

        Raises:
            CommitError: If the batch is inconsistent; nothing is applied
        """
        txs = dict(self._txs)
        utxos = dict(self._utxos)
        last_index = dict(self._last_index)

        for txid in batch.deleted_txids:
            txs.pop(txid, None)
        utxos = {op: u for op, u in utxos.items() if op.txid not in batch.deleted_txids}

        txs.update(batch.transactions)

        for outpoint, utxo in batch.utxos.items():
            if outpoint.txid not in txs:
                raise CommitError(f"UTXO {outpoint} references unknown transaction")
            utxos[outpoint] = utxo

        for keychain, index in batch.last_indexes.items():
            if index >= len(self._scripts[keychain]):
                raise CommitError(f"Last index {index} beyond cached {keychain.value} scripts")
            last_index[keychain] = max(index, last_index.get(keychain, -1))

        self._txs, self._utxos, self._last_index = txs, utxos, last_index
        logger.debug(
            f"Committed batch: {len(batch.transactions)} txs, {len(batch.deleted_txids)} "
            f"deleted, {len(batch.utxos)} utxos"
        )
