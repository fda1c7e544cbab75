"""
Complete transaction history of a single script.

Esplora pages script history on 25 confirmed transactions. The first page
also carries any mempool transactions; later pages are requested with the
last seen txid as cursor and contain confirmed transactions only.
"""

from __future__ import annotations

from loguru import logger

from esplora_sync.backends.esplora import EsploraClient
from esplora_sync.backends.models import EsploraTx
from esplora_sync.backends.retry import RateLimitRetry

# Confirmed transactions per page served by Esplora
PAGE_SIZE = 25


async def fetch_script_history(
    client: EsploraClient,
    script: bytes,
    retry: RateLimitRetry | None = None,
) -> list[EsploraTx]:
    """
    Fetch every transaction touching ``script``, in the order Esplora returns them.

    Keeps paging while pages are full. A history whose confirmed count is an
    exact multiple of 25 therefore costs one extra request, answered with an
    empty page.

    Raises:
        EsploraError: If any page cannot be fetched (after rate-limit retries)
    """
    retry = retry or RateLimitRetry()

    related_txs = await retry(client.scripthash_txs, script, None)
    n_confirmed = sum(1 for tx in related_txs if tx.status.confirmed)

    # A full first page means older confirmed transactions may follow
    if n_confirmed >= PAGE_SIZE:
        while True:
            last_seen = related_txs[-1].txid
            page = await retry(client.scripthash_txs, script, last_seen)
            related_txs.extend(page)
            if len(page) < PAGE_SIZE:
                break

    logger.debug(f"Script {script.hex()} has {len(related_txs)} related txs")
    return related_txs
