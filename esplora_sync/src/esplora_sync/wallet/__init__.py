"""
Wallet-side sync components.
"""

from esplora_sync.wallet.models import BlockTime, KeychainKind, LocalUtxo, TransactionDetails

__all__ = ["BlockTime", "KeychainKind", "LocalUtxo", "TransactionDetails"]
