"""
Esplora REST API client.

Thin async transport over the Esplora HTTP API (Blockstream's esplora,
mempool.space and self-hosted instances). It performs single calls only;
retry and pagination live in the sync engine.

Error mapping:
- Non-2xx responses raise ``ApiError`` carrying the HTTP status
- Connection, timeout and proxy failures raise ``TransportError``
"""

from __future__ import annotations

from types import TracebackType
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from esplora_sync.backends.models import EsploraTx
from esplora_sync.bitcoin import Transaction, script_to_scripthash
from esplora_sync.errors import ApiError, TransportError

if TYPE_CHECKING:
    from esplora_sync.settings import EsploraSettings

DEFAULT_TIMEOUT = 30.0

HTTP_NOT_FOUND = 404

_TX_LIST = TypeAdapter(list[EsploraTx])
_FEE_ESTIMATES = TypeAdapter(dict[int, float])


def convert_fee_rate(target: int, estimates: dict[int, float]) -> float:
    """
    Pick the fee rate (sat/vB) for a confirmation target.

    Uses the estimate of the largest target not exceeding ``target``.
    Falls back to 1 sat/vB when no estimate qualifies.
    """
    for blocks in sorted(estimates, reverse=True):
        if blocks <= target:
            return estimates[blocks]
    return 1.0


class EsploraClient:
    """
    Async client for an Esplora instance.

    Usage:
        async with EsploraClient("https://blockstream.info/api") as client:
            height = await client.get_height()
            history = await client.scripthash_txs(script)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float | None = DEFAULT_TIMEOUT,
        proxy: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Esplora API root, e.g. https://blockstream.info/api
            timeout: Per-request timeout in seconds (None disables it)
            proxy: Optional proxy URL (http://, socks5://)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.proxy = proxy
        if proxy:
            logger.info(f"Configuring Esplora client with proxy: {proxy}")
        self.client = httpx.AsyncClient(timeout=timeout, proxy=proxy, transport=transport)

    @classmethod
    def from_settings(cls, settings: EsploraSettings) -> EsploraClient:
        return cls(base_url=settings.base_url, timeout=settings.timeout, proxy=settings.proxy)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ApiError(e.response.status_code, e.response.text.strip()) from e
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        return response

    async def _get_json(self, path: str, adapter: TypeAdapter[Any]) -> Any:
        response = await self._request("GET", path)
        try:
            return adapter.validate_json(response.content)
        except ValidationError as e:
            raise ApiError(response.status_code, f"Malformed response from {path}: {e}") from e

    async def _get_text(self, path: str) -> str:
        response = await self._request("GET", path)
        return response.text.strip()

    async def scripthash_txs(self, script: bytes, last_seen: str | None = None) -> list[EsploraTx]:
        """
        Get one page of transactions touching a script.

        Without ``last_seen`` the first page is returned (mempool transactions
        followed by up to 25 confirmed ones); with it, up to 25 confirmed
        transactions older than ``last_seen``.
        """
        scripthash = script_to_scripthash(script)
        path = f"/scripthash/{scripthash}/txs"
        if last_seen is not None:
            path = f"{path}/chain/{last_seen}"
        txs: list[EsploraTx] = await self._get_json(path, _TX_LIST)
        logger.debug(f"Fetched {len(txs)} txs for scripthash {scripthash} (after={last_seen})")
        return txs

    async def get_tx(self, txid: str) -> EsploraTx | None:
        """Get a transaction by id, None if the service does not know it."""
        try:
            response = await self._request("GET", f"/tx/{txid}")
        except ApiError as e:
            if e.status == HTTP_NOT_FOUND:
                logger.debug(f"Transaction {txid} not found")
                return None
            raise
        try:
            return EsploraTx.model_validate_json(response.content)
        except ValidationError as e:
            raise ApiError(response.status_code, f"Malformed transaction {txid}: {e}") from e

    async def get_height(self) -> int:
        text = await self._get_text("/blocks/tip/height")
        try:
            height = int(text)
        except ValueError as e:
            raise ApiError(200, f"Malformed tip height: {text!r}") from e
        logger.debug(f"Current block height: {height}")
        return height

    async def get_block_hash(self, height: int) -> str:
        block_hash = await self._get_text(f"/block-height/{height}")
        logger.debug(f"Block hash for height {height}: {block_hash}")
        return block_hash

    async def get_fee_estimates(self) -> dict[int, float]:
        """Map of confirmation target (blocks) to fee rate (sat/vB)."""
        estimates: dict[int, float] = await self._get_json("/fee-estimates", _FEE_ESTIMATES)
        return estimates

    async def broadcast(self, tx: Transaction | str) -> str:
        """Broadcast a transaction, returning its txid."""
        tx_hex = tx if isinstance(tx, str) else tx.to_hex()
        response = await self._request("POST", "/tx", content=tx_hex)
        txid = response.text.strip()
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> EsploraClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
