"""
Shared test helpers for esplora_sync tests.

Factories for Esplora transaction records and an in-memory fake of the
Esplora service with the real pagination rules. Separated from conftest.py
so test modules can import them directly.
"""

from __future__ import annotations

import asyncio
from typing import Any

from esplora_sync.backends.models import EsploraTx
from esplora_sync.errors import ApiError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# P2WPKH scripts with recognizable hashes
SCRIPT_A = bytes([0x00, 0x14]) + bytes([0xAA]) * 20
SCRIPT_B = bytes([0x00, 0x14]) + bytes([0xBB]) * 20
SCRIPT_C = bytes([0x00, 0x14]) + bytes([0xCC]) * 20
FOREIGN_SCRIPT = bytes([0x00, 0x14]) + bytes([0xEE]) * 20

BASE_HEIGHT = 800_000
BASE_TIME = 1_690_000_000


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def make_txid(n: int, tag: int = 0) -> str:
    """Deterministic 64-hex-char txid."""
    return f"{tag:08x}{n:056x}"


def make_script(n: int) -> bytes:
    """Distinct P2WPKH script for index ``n``."""
    return bytes([0x00, 0x14]) + n.to_bytes(20, "big")


def make_tx(
    txid: str,
    *,
    confirmed: bool = True,
    height: int | None = BASE_HEIGHT,
    block_time: int | None = BASE_TIME,
    outputs: list[tuple[int, bytes]] | None = None,
    inputs: list[dict[str, Any]] | None = None,
) -> EsploraTx:
    """
    Build an EsploraTx from Esplora-shaped JSON.

    Args:
        txid: Transaction id
        confirmed: Whether the tx is in a block
        height: Block height (ignored when unconfirmed)
        block_time: Block timestamp (ignored when unconfirmed)
        outputs: (value, script) pairs, default one 10_000 sat output to FOREIGN_SCRIPT
        inputs: Raw vin dicts, default one input spending a foreign output
    """
    status: dict[str, Any] = {"confirmed": confirmed}
    if confirmed:
        status.update(
            {"block_height": height, "block_hash": "00" * 32, "block_time": block_time}
        )
    if inputs is None:
        inputs = [make_vin(make_txid(0, tag=0xFFFF), 0, 20_000, FOREIGN_SCRIPT)]
    if outputs is None:
        outputs = [(10_000, FOREIGN_SCRIPT)]
    return EsploraTx.model_validate(
        {
            "txid": txid,
            "version": 2,
            "locktime": 0,
            "vin": inputs,
            "vout": [{"value": value, "scriptpubkey": script.hex()} for value, script in outputs],
            "status": status,
            "size": 222,
            "weight": 561,
            "fee": 141,
        }
    )


def make_vin(prev_txid: str, vout: int, value: int, script: bytes) -> dict[str, Any]:
    """Esplora-shaped input spending ``prev_txid:vout``."""
    return {
        "txid": prev_txid,
        "vout": vout,
        "prevout": {"value": value, "scriptpubkey": script.hex()},
        "scriptsig": "",
        "witness": ["3044" + "00" * 68, "02" + "11" * 32],
        "is_coinbase": False,
        "sequence": 0xFFFFFFFD,
    }


def make_history(
    count: int,
    *,
    tag: int = 1,
    unconfirmed: int = 0,
    script: bytes | None = None,
) -> list[EsploraTx]:
    """
    History in Esplora order: mempool first, then confirmed newest first.

    Confirmed txs pay 1_000 sats to ``script`` when given.
    """
    outputs = [(1_000, script)] if script is not None else None
    history = [
        make_tx(make_txid(i, tag=tag + 0x1000), confirmed=False, outputs=outputs)
        for i in range(unconfirmed)
    ]
    history.extend(
        make_tx(
            make_txid(i, tag=tag),
            height=BASE_HEIGHT + count - i,
            block_time=BASE_TIME + count - i,
            outputs=outputs,
        )
        for i in range(count)
    )
    return history


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class RecordingSleep:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeEsplora:
    """
    In-memory Esplora service implementing ``scripthash_txs`` and ``get_tx``.

    Pagination follows Esplora: the first page holds every mempool tx plus
    the 25 newest confirmed ones; ``/chain/{last_seen}`` pages hold the next
    25 confirmed txs after ``last_seen``.
    """

    PAGE_SIZE = 25

    def __init__(self, histories: dict[bytes, list[EsploraTx]] | None = None) -> None:
        self.histories: dict[bytes, list[EsploraTx]] = dict(histories or {})
        self.calls: list[tuple[bytes, str | None]] = []
        self.tx_calls: list[str] = []
        # Queued errors raised (in order) before serving a script / tx
        self.errors: dict[bytes | str, list[Exception]] = {}
        # Optional per-script latency, to shuffle completion order
        self.delays: dict[bytes, float] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    def fail(self, key: bytes | str, *errors: Exception) -> None:
        self.errors.setdefault(key, []).extend(errors)

    def rate_limit(self, key: bytes | str, times: int) -> None:
        self.fail(key, *(ApiError(429, "Too Many Requests") for _ in range(times)))

    def _raise_queued(self, key: bytes | str) -> None:
        queued = self.errors.get(key)
        if queued:
            raise queued.pop(0)

    async def scripthash_txs(self, script: bytes, last_seen: str | None = None) -> list[EsploraTx]:
        self.calls.append((script, last_seen))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(script, 0))
            self._raise_queued(script)
            history = self.histories.get(script, [])
            confirmed = [tx for tx in history if tx.status.confirmed]
            if last_seen is None:
                mempool = [tx for tx in history if not tx.status.confirmed]
                return mempool + confirmed[: self.PAGE_SIZE]
            ids = [tx.txid for tx in confirmed]
            start = ids.index(last_seen) + 1 if last_seen in ids else len(ids)
            return confirmed[start : start + self.PAGE_SIZE]
        finally:
            self.in_flight -= 1

    async def get_tx(self, txid: str) -> EsploraTx | None:
        self.tx_calls.append(txid)
        self._raise_queued(txid)
        for history in self.histories.values():
            for tx in history:
                if tx.txid == txid:
                    return tx
        return None

    async def close(self) -> None:
        self.closed = True
