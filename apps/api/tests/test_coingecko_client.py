"""
Tests del cliente de CoinGecko.
No requieren red: el httpx.AsyncClient se inyecta como mock.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from core.errors import PriceFeedError
from feeds.coingecko_client import MAX_IDS_PER_REQUEST, CoinGeckoClient

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_mock_response(
    json_body: object,
    status_code: int = 200,
    headers: dict | None = None,
) -> MagicMock:
    """Crea un MagicMock de httpx.Response."""
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status_code
    resp.json.return_value = json_body
    resp.headers = httpx.Headers(headers or {})
    return resp


def make_client(mock_responses: list) -> tuple[CoinGeckoClient, AsyncMock]:
    """
    CoinGeckoClient con http_client mockeado.
    mock_responses: valores que retornará .request() en orden.
    """
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.request = AsyncMock(side_effect=mock_responses)
    mock_http.aclose = AsyncMock()
    return CoinGeckoClient(vs_currency="IDR", http_client=mock_http), mock_http


@pytest.fixture
def no_sleep(monkeypatch) -> list[float]:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return sleeps


# ---------------------------------------------------------------------------
# Tests: get_prices
# ---------------------------------------------------------------------------


async def test_get_prices_returns_decimals():
    client, mock_http = make_client([
        make_mock_response({"bitcoin": {"idr": 1000000000}, "ethereum": {"idr": 55123456.78}})
    ])

    prices = await client.get_prices(["bitcoin", "ethereum"])

    assert prices == {"bitcoin": Decimal("1000000000"), "ethereum": Decimal("55123456.78")}
    _, kwargs = mock_http.request.call_args
    assert kwargs["params"] == {"ids": "bitcoin,ethereum", "vs_currencies": "idr"}


async def test_get_prices_normalizes_and_dedupes_ids():
    client, mock_http = make_client([make_mock_response({"bitcoin": {"idr": 1}})])

    await client.get_prices([" Bitcoin ", "bitcoin", ""])

    _, kwargs = mock_http.request.call_args
    assert kwargs["params"]["ids"] == "bitcoin"


async def test_unknown_ids_are_omitted():
    client, _ = make_client([make_mock_response({"bitcoin": {"idr": 1}, "nope": {}})])
    prices = await client.get_prices(["bitcoin", "nope"])
    assert prices == {"bitcoin": Decimal("1")}


async def test_get_prices_chunks_large_requests():
    ids = [f"coin-{i:03d}" for i in range(MAX_IDS_PER_REQUEST + 5)]
    client, mock_http = make_client([make_mock_response({}), make_mock_response({})])

    await client.get_prices(ids)

    assert mock_http.request.call_count == 2


async def test_get_price_single_coin():
    client, _ = make_client([make_mock_response({"solana": {"idr": "2500000.5"}})])
    assert await client.get_price("Solana") == Decimal("2500000.5")


async def test_unexpected_payload_raises():
    client, _ = make_client([make_mock_response(["not", "a", "dict"])])
    with pytest.raises(PriceFeedError):
        await client.get_prices(["bitcoin"])


# ---------------------------------------------------------------------------
# Tests: retry
# ---------------------------------------------------------------------------


async def test_request_retries_on_429_then_succeeds(no_sleep):
    client, mock_http = make_client([
        make_mock_response({}, status_code=429, headers={"Retry-After": "3"}),
        make_mock_response({"bitcoin": {"idr": 10}}),
    ])

    prices = await client.get_prices(["bitcoin"])

    assert prices == {"bitcoin": Decimal("10")}
    assert mock_http.request.call_count == 2
    assert no_sleep == [3.0]


async def test_request_raises_after_max_retries(no_sleep):
    client, mock_http = make_client(
        [make_mock_response({}, status_code=503)] * CoinGeckoClient.MAX_RETRIES
    )

    with pytest.raises(PriceFeedError) as exc_info:
        await client.get_prices(["bitcoin"])

    assert exc_info.value.status == 503
    assert mock_http.request.call_count == CoinGeckoClient.MAX_RETRIES


async def test_request_raises_on_4xx_without_retry(no_sleep):
    client, mock_http = make_client([make_mock_response({}, status_code=404)])

    with pytest.raises(PriceFeedError) as exc_info:
        await client.get_prices(["bitcoin"])

    assert exc_info.value.status == 404
    assert mock_http.request.call_count == 1
    assert no_sleep == []


async def test_request_retries_on_network_error(no_sleep):
    client, mock_http = make_client([
        httpx.ConnectError("boom"),
        make_mock_response({"bitcoin": {"idr": 7}}),
    ])

    prices = await client.get_prices(["bitcoin"])

    assert prices["bitcoin"] == Decimal("7")
    assert no_sleep == [CoinGeckoClient.BASE_BACKOFF]


async def test_retry_after_is_capped(no_sleep):
    client, _ = make_client([
        make_mock_response({}, status_code=429, headers={"Retry-After": "3600"}),
        make_mock_response({}),
    ])
    await client.get_prices(["bitcoin"])
    assert no_sleep == [float(CoinGeckoClient.MAX_RETRY_AFTER)]


async def test_context_manager_closes_http_client():
    client, mock_http = make_client([])
    async with client:
        pass
    mock_http.aclose.assert_awaited_once()
