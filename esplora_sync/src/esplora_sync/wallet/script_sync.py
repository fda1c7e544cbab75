"""
Staged request/satisfy protocol for script-based wallet sync.

A sync plan hands the engine one request at a time and advances when the
engine satisfies it:

    ScriptRequest -> ConftimeRequest -> TxRequest -> Finish

1. ScriptRequest: which scripts to look up. Satisfied with, per script,
   the (txid, block height) pairs touching it. Repeats until the gap limit
   ends discovery on every keychain.
2. ConftimeRequest: which txids need a confirmation time. Satisfied with
   one ``BlockTime | None`` per txid.
3. TxRequest: which txids need their full body. Satisfied with one
   (previous outputs, transaction) pair per txid.
4. Finish: carries the ``BatchUpdate`` to commit.

Payloads must match their request in length and order. Each request can
be satisfied once.

The gap-limit policy: scripts are requested in batches of ``stop_gap``
from the database's script cache, external keychain first. A keychain is
done once ``stop_gap`` consecutive scripts have no history or its cached
scripts run out.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from loguru import logger

from esplora_sync.bitcoin import OutPoint, Transaction, TxOut
from esplora_sync.errors import SyncProtocolError
from esplora_sync.wallet.database import BatchUpdate, WalletDatabase
from esplora_sync.wallet.models import BlockTime, KeychainKind, LocalUtxo, TransactionDetails

ItemT = TypeVar("ItemT")
AnswerT = TypeVar("AnswerT")

ScriptTxids = list[tuple[str, int | None]]
FullTx = tuple[list[TxOut | None], Transaction]

KEYCHAIN_ORDER = (KeychainKind.EXTERNAL, KeychainKind.INTERNAL)


@dataclass
class _SyncState:
    database: WalletDatabase
    stop_gap: int
    # txid -> block height, in order of first discovery
    discovered: dict[str, int | None] = field(default_factory=dict)
    last_active: dict[KeychainKind, int] = field(default_factory=dict)
    conftimes: dict[str, BlockTime | None] = field(default_factory=dict)
    full_txs: dict[str, FullTx] = field(default_factory=dict)


class _Stage(Generic[ItemT, AnswerT]):
    """A single-use request over a finite, ordered list of work items."""

    def __init__(self, state: _SyncState, items: Sequence[ItemT]) -> None:
        self._state = state
        self._items = list(items)
        self._satisfied = False

    def request(self) -> Iterator[ItemT]:
        yield from self._items

    def __len__(self) -> int:
        return len(self._items)

    def _accept(self, payload: Sequence[AnswerT]) -> list[AnswerT]:
        if self._satisfied:
            raise SyncProtocolError(f"{type(self).__name__} was already satisfied")
        answers = list(payload)
        if len(answers) != len(self._items):
            raise SyncProtocolError(
                f"{type(self).__name__} expected {len(self._items)} answers, got {len(answers)}"
            )
        self._satisfied = True
        return answers


class ScriptRequest(_Stage[bytes, ScriptTxids]):
    """Scripts whose transaction history is needed."""

    def __init__(
        self,
        state: _SyncState,
        keychain: KeychainKind,
        start_index: int,
        scripts: Sequence[bytes],
        consecutive_unused: int,
    ) -> None:
        super().__init__(state, scripts)
        self.keychain = keychain
        self.start_index = start_index
        self._consecutive_unused = consecutive_unused

    def satisfy(self, txids_per_script: Sequence[ScriptTxids]) -> SyncRequest:
        answers = self._accept(txids_per_script)
        state = self._state

        unused = self._consecutive_unused
        for offset, txs in enumerate(answers):
            if not txs:
                unused += 1
                continue
            unused = 0
            state.last_active[self.keychain] = self.start_index + offset
            for txid, height in txs:
                state.discovered[txid] = height

        next_index = self.start_index + len(answers)
        logger.debug(
            f"Scanned {self.keychain.value} scripts up to index {next_index - 1}, "
            f"{unused} consecutive unused"
        )
        return _next_script_stage(state, self.keychain, next_index, unused)


class ConftimeRequest(_Stage[str, BlockTime | None]):
    """Txids whose confirmation time is needed."""

    def satisfy(self, conftimes: Sequence[BlockTime | None]) -> SyncRequest:
        answers = self._accept(conftimes)
        self._state.conftimes.update(zip(self._items, answers, strict=True))
        return _tx_stage(self._state)


class TxRequest(_Stage[str, FullTx]):
    """Txids whose full transaction body is needed."""

    def satisfy(self, full_txs: Sequence[FullTx]) -> SyncRequest:
        answers = self._accept(full_txs)
        self._state.full_txs.update(zip(self._items, answers, strict=True))
        return Finish(_build_batch(self._state))


@dataclass
class Finish:
    """Terminal stage: the batch to commit."""

    batch: BatchUpdate


SyncRequest = ScriptRequest | ConftimeRequest | TxRequest | Finish


def start(database: WalletDatabase, stop_gap: int) -> SyncRequest:
    """
    Begin a sync plan over the scripts cached in ``database``.

    Args:
        database: Read view of the wallet database
        stop_gap: Consecutive unused scripts that end discovery on a keychain

    Raises:
        ValueError: If stop_gap is not positive
    """
    if stop_gap < 1:
        raise ValueError(f"stop_gap must be positive, got {stop_gap}")
    state = _SyncState(database=database, stop_gap=stop_gap)
    return _next_script_stage(state, KEYCHAIN_ORDER[0], 0, 0)


def _next_script_stage(
    state: _SyncState,
    keychain: KeychainKind,
    start_index: int,
    consecutive_unused: int,
) -> SyncRequest:
    position = KEYCHAIN_ORDER.index(keychain)
    while True:
        cached = state.database.iter_script_pubkeys(keychain)
        if consecutive_unused < state.stop_gap and start_index < len(cached):
            batch = cached[start_index : start_index + state.stop_gap]
            return ScriptRequest(state, keychain, start_index, batch, consecutive_unused)

        logger.debug(f"Discovery on {keychain.value} keychain done after {start_index} scripts")
        position += 1
        if position == len(KEYCHAIN_ORDER):
            return _conftime_stage(state)
        keychain = KEYCHAIN_ORDER[position]
        start_index = 0
        consecutive_unused = 0


def _conftime_stage(state: _SyncState) -> SyncRequest:
    needed = []
    for txid, height in state.discovered.items():
        stored = state.database.get_tx(txid)
        stored_height = (
            stored.confirmation_time.height
            if stored is not None and stored.confirmation_time is not None
            else None
        )
        if stored is None or stored_height != height:
            needed.append(txid)
    logger.info(
        f"Discovered {len(state.discovered)} transactions, "
        f"{len(needed)} need a confirmation update"
    )
    return ConftimeRequest(state, needed)


def _tx_stage(state: _SyncState) -> SyncRequest:
    needed = []
    for txid in state.discovered:
        stored = state.database.get_tx(txid)
        if stored is None or stored.transaction is None:
            needed.append(txid)
    return TxRequest(state, needed)


def _is_mine(database: WalletDatabase, script: bytes) -> bool:
    return database.get_path_from_script_pubkey(script) is not None


def _make_details(
    database: WalletDatabase,
    txid: str,
    previous_outputs: list[TxOut | None],
    tx: Transaction,
) -> TransactionDetails:
    received = sum(out.value for out in tx.outputs if _is_mine(database, out.script_pubkey))
    sent = sum(
        prev.value
        for prev in previous_outputs
        if prev is not None and _is_mine(database, prev.script_pubkey)
    )

    fee = None
    if previous_outputs and all(prev is not None for prev in previous_outputs):
        fee = sum(prev.value for prev in previous_outputs if prev is not None) - sum(
            out.value for out in tx.outputs
        )

    return TransactionDetails(txid=txid, received=received, sent=sent, transaction=tx, fee=fee)


def _build_batch(state: _SyncState) -> BatchUpdate:
    database = state.database
    batch = BatchUpdate()

    final_txs: list[tuple[str, Transaction]] = []
    for txid in state.discovered:
        stored = database.get_tx(txid)
        if txid in state.full_txs:
            previous_outputs, tx = state.full_txs[txid]
            details = _make_details(database, txid, previous_outputs, tx)
            details.confirmation_time = stored.confirmation_time if stored else None
        elif stored is not None:
            details = dataclasses.replace(stored)
        else:
            raise SyncProtocolError(f"No transaction body for {txid}")

        if txid in state.conftimes:
            details.confirmation_time = state.conftimes[txid]

        batch.set_tx(details)
        if details.transaction is not None:
            final_txs.append((txid, details.transaction))

    for stored in database.iter_txs():
        if stored.txid not in state.discovered:
            logger.info(f"Transaction {stored.txid} is no longer reported, removing it")
            batch.del_tx(stored.txid)

    utxos: dict[OutPoint, LocalUtxo] = {}
    for txid, tx in final_txs:
        for vout, out in enumerate(tx.outputs):
            path = database.get_path_from_script_pubkey(out.script_pubkey)
            if path is not None:
                outpoint = OutPoint(txid=txid, vout=vout)
                utxos[outpoint] = LocalUtxo(outpoint=outpoint, txout=out, keychain=path[0])
    for _, tx in final_txs:
        for inp in tx.inputs:
            if inp.previous_output in utxos:
                utxos[inp.previous_output].is_spent = True
    for utxo in utxos.values():
        batch.set_utxo(utxo)

    for keychain, index in state.last_active.items():
        batch.set_last_index(keychain, index)

    return batch
