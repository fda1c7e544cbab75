"""
Esplora backend: HTTP client, wire models and rate-limit retry.
"""

from esplora_sync.backends.esplora import EsploraClient, convert_fee_rate
from esplora_sync.backends.models import EsploraTx, TxStatus
from esplora_sync.backends.retry import ErrorClass, RateLimitRetry, classify_error

__all__ = [
    "EsploraClient",
    "EsploraTx",
    "ErrorClass",
    "RateLimitRetry",
    "TxStatus",
    "classify_error",
    "convert_fee_rate",
]
