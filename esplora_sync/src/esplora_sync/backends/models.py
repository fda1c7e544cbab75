"""
Esplora REST API data models.

Esplora returns transactions as JSON documents. These models validate the
fields the sync engine relies on and ignore everything else, so new
fields added by the service do not break parsing.

Example (abridged):
    {
        "txid": "...",
        "version": 2,
        "locktime": 0,
        "vin": [{"txid": "...", "vout": 0, "prevout": {...}, "scriptsig": "",
                 "witness": ["..."], "sequence": 4294967293, "is_coinbase": false}],
        "vout": [{"scriptpubkey": "0014...", "value": 12345}],
        "status": {"confirmed": true, "block_height": 800000,
                   "block_hash": "...", "block_time": 1690000000},
        "fee": 141
    }
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from esplora_sync.bitcoin import OutPoint, Transaction, TxIn, TxOut
from esplora_sync.wallet.models import BlockTime

_MODEL_CONFIG = ConfigDict(frozen=True, extra="ignore")

# Even-length hex, so bytes.fromhex on an accepted value cannot fail
HexStr = Annotated[str, Field(pattern=r"^(?:[0-9a-fA-F]{2})*$")]


class TxStatus(BaseModel):
    model_config = _MODEL_CONFIG

    confirmed: bool
    block_height: int | None = None
    block_hash: str | None = None
    block_time: int | None = None


class PrevOut(BaseModel):
    model_config = _MODEL_CONFIG

    value: int = Field(..., ge=0)
    scriptpubkey: HexStr


class Vin(BaseModel):
    model_config = _MODEL_CONFIG

    txid: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    vout: int
    prevout: PrevOut | None = None  # null for coinbase inputs
    scriptsig: HexStr = ""
    witness: list[HexStr] = Field(default_factory=list)
    sequence: int = 0xFFFFFFFF
    is_coinbase: bool = False


class Vout(BaseModel):
    model_config = _MODEL_CONFIG

    value: int = Field(..., ge=0)
    scriptpubkey: HexStr


class EsploraTx(BaseModel):
    """
    Snapshot of one transaction as reported by Esplora.

    Immutable once parsed; the sync engine indexes these by txid.
    """

    model_config = _MODEL_CONFIG

    txid: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    version: int
    locktime: int
    vin: list[Vin]
    vout: list[Vout]
    status: TxStatus
    fee: int | None = None

    def confirmation_time(self) -> BlockTime | None:
        """Block height and time, present only for confirmed transactions."""
        status = self.status
        if status.confirmed and status.block_height is not None and status.block_time is not None:
            return BlockTime(height=status.block_height, timestamp=status.block_time)
        return None

    def previous_outputs(self) -> list[TxOut | None]:
        """Outputs spent by each input, in input order (None for coinbase)."""
        return [
            TxOut(value=vin.prevout.value, script_pubkey=bytes.fromhex(vin.prevout.scriptpubkey))
            if vin.prevout is not None
            else None
            for vin in self.vin
        ]

    def to_tx(self) -> Transaction:
        """Materialize the full transaction body."""
        return Transaction(
            version=self.version,
            inputs=tuple(
                TxIn(
                    previous_output=OutPoint(txid=vin.txid, vout=vin.vout),
                    script_sig=bytes.fromhex(vin.scriptsig),
                    sequence=vin.sequence,
                    witness=tuple(bytes.fromhex(item) for item in vin.witness),
                )
                for vin in self.vin
            ),
            outputs=tuple(
                TxOut(value=vout.value, script_pubkey=bytes.fromhex(vout.scriptpubkey))
                for vout in self.vout
            ),
            locktime=self.locktime,
        )
