"""
Wallet transaction history sync against Esplora block explorers.
"""

from esplora_sync.blockchain import Capability, EsploraBlockchain
from esplora_sync.wallet.database import BatchUpdate, MemoryDatabase, WalletDatabase

__version__ = "0.1.0"

__all__ = [
    "BatchUpdate",
    "Capability",
    "EsploraBlockchain",
    "MemoryDatabase",
    "WalletDatabase",
    "__version__",
]
