"""
Cliente HTTP para el feed de precios de CoinGecko (/simple/price).

Reglas:
- Precios como Decimal(str(valor)), nunca float en datos de negocio.
- Backoff exponencial en 429/5xx y errores de red, respetando Retry-After.
- Los ids se piden en bloques para no superar la longitud de URL.
- Cancelable: si la vista que lo usa se cierra, la CancelledError se propaga sin reintentos.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
import structlog

from core.errors import PriceFeedError

logger = structlog.get_logger(__name__)

MAX_IDS_PER_REQUEST: int = 100


class CoinGeckoClient:
    """
    Cliente asíncrono del endpoint /simple/price.

    Uso:
        async with CoinGeckoClient(vs_currency="idr") as client:
            prices = await client.get_prices(["bitcoin", "ethereum"])

    El http_client es inyectable para facilitar tests unitarios.
    """

    MAX_RETRIES: int = 3
    BASE_BACKOFF: float = 2.0  # segundos
    MAX_RETRY_AFTER: int = 60

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        vs_currency: str = "idr",
        api_key: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self.vs_currency = vs_currency.lower()
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-cg-demo-api-key"] = api_key
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            headers=headers,
        )

    async def __aenter__(self) -> "CoinGeckoClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # -----------------------------------------------------------------------
    # Request base con retry
    # -----------------------------------------------------------------------

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        """Segundos a esperar: Retry-After si es numérico, si no backoff exponencial."""
        raw = response.headers.get("Retry-After")
        try:
            wait = float(raw) if raw is not None else self.BASE_BACKOFF ** (attempt + 1)
        except ValueError:
            wait = self.BASE_BACKOFF ** (attempt + 1)
        return min(wait, self.MAX_RETRY_AFTER)

    async def _request(self, path: str, params: dict[str, Any]) -> Any:
        last_exc: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await self._client.request("GET", path, params=params)

                if response.status_code == 429 or response.status_code >= 500:
                    retry_after = self._retry_after(response, attempt)
                    logger.warning(
                        "coingecko.retryable_status",
                        status=response.status_code,
                        retry_after=retry_after,
                        attempt=attempt,
                        path=path,
                    )
                    last_exc = PriceFeedError(
                        f"CoinGecko HTTP {response.status_code}", status=response.status_code
                    )
                    if attempt < self.MAX_RETRIES - 1:
                        await asyncio.sleep(retry_after)
                    continue

                if response.status_code >= 400:
                    raise PriceFeedError(
                        f"CoinGecko HTTP {response.status_code}", status=response.status_code
                    )

                return response.json()

            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                backoff = self.BASE_BACKOFF ** (attempt + 1)
                logger.warning(
                    "coingecko.network_error",
                    path=path,
                    attempt=attempt,
                    backoff=backoff,
                    error=str(exc),
                )
                last_exc = PriceFeedError(f"Error de red con CoinGecko: {exc}")
                if attempt < self.MAX_RETRIES - 1:
                    await asyncio.sleep(backoff)

        raise last_exc or PriceFeedError(f"Max retries exceeded for {path}")

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    async def get_prices(self, ids: list[str]) -> dict[str, Decimal]:
        """
        Precio actual de cada id en vs_currency.
        Los ids que CoinGecko no conoce simplemente no aparecen en el resultado.
        """
        unique_ids = sorted({i.strip().lower() for i in ids if i and i.strip()})
        prices: dict[str, Decimal] = {}

        for start in range(0, len(unique_ids), MAX_IDS_PER_REQUEST):
            chunk = unique_ids[start : start + MAX_IDS_PER_REQUEST]
            data = await self._request(
                "/simple/price",
                params={"ids": ",".join(chunk), "vs_currencies": self.vs_currency},
            )
            if not isinstance(data, dict):
                raise PriceFeedError("Respuesta de CoinGecko con formato inesperado")

            for coin_id, quote in data.items():
                raw = quote.get(self.vs_currency) if isinstance(quote, dict) else None
                if raw is None:
                    continue
                try:
                    prices[coin_id] = Decimal(str(raw))
                except InvalidOperation:
                    logger.warning("coingecko.bad_price", coin_id=coin_id, raw=str(raw))

        logger.debug("coingecko.prices", requested=len(unique_ids), received=len(prices))
        return prices

    async def get_price(self, coin_id: str) -> Decimal | None:
        prices = await self.get_prices([coin_id])
        return prices.get(coin_id.strip().lower())
