"""
Wallet data models.
"""

from __future__ import annotations

from enum import Enum

from pydantic.dataclasses import dataclass

from esplora_sync.bitcoin import OutPoint, Transaction, TxOut


class KeychainKind(str, Enum):
    """Which derivation branch a wallet script belongs to."""

    EXTERNAL = "external"  # Receive addresses
    INTERNAL = "internal"  # Change addresses


@dataclass(frozen=True)
class BlockTime:
    """Height and timestamp of the block confirming a transaction."""

    height: int
    timestamp: int


@dataclass
class LocalUtxo:
    """A wallet-owned output, spent or not."""

    outpoint: OutPoint
    txout: TxOut
    keychain: KeychainKind
    is_spent: bool = False


@dataclass
class TransactionDetails:
    """A wallet transaction with its effect on the wallet balance."""

    txid: str
    received: int  # satoshis paid to wallet scripts
    sent: int  # satoshis spent from wallet outputs
    transaction: Transaction | None = None
    fee: int | None = None  # None when some previous output is unknown
    confirmation_time: BlockTime | None = None  # None while unconfirmed

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation_time is not None

    @property
    def net(self) -> int:
        """Net change of the wallet balance caused by this transaction."""
        return self.received - self.sent
