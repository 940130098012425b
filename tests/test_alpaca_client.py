"""Tests for the Alpaca market data client (no network — httpx.MockTransport).

Run: python -m pytest tests/test_alpaca_client.py -v
"""

from __future__ import annotations

from datetime import date

import httpx
import pytest

from sentiment_api.collectors.alpaca_client import AlpacaClient, parse_contract_symbol
from sentiment_api.errors import BrokerageAuthError, DataSourceError
from sentiment_api.models.market_data import OptionType

NEWS_PAYLOAD = {
    "news": [
        {
            "id": 39874123,
            "headline": "Apple's New AI Feature Boosts Stock",
            "summary": "Shares climbed after the keynote.",
            "source": "benzinga",
            "created_at": "2024-06-03T13:00:00Z",
            "symbols": ["AAPL"],
        },
        {"id": 39874124, "headline": "", "symbols": ["MSFT"]},
    ],
    "next_page_token": None,
}

SNAPSHOT_PAYLOAD = {
    "snapshots": {
        "AAPL240920C00150000": {
            "latestQuote": {"ap": 2.55, "as": 12, "bp": 2.45, "bs": 9},
            "latestTrade": {"p": 2.5, "s": 3},
            "dailyBar": {"v": 1834, "c": 2.5},
            "impliedVolatility": 0.31,
            "greeks": {"delta": 0.52, "gamma": 0.021, "theta": -0.061, "vega": 0.29},
        },
        "AAPL240920P00140000": {
            "latestQuote": {"ap": 1.1, "bp": 1.0},
            "latestTrade": {"p": 1.05, "s": 40},
        },
        "NOT-AN-OPTION": {"latestQuote": {"ap": 1.0}},
    }
}


def _client(config, handler) -> AlpacaClient:
    transport = httpx.MockTransport(handler)
    return AlpacaClient(config, client=httpx.AsyncClient(transport=transport), backoff_base=0.0)


# ══════════════════════════════════════════════════════════════════
# 1. OCC SYMBOL PARSING
# ══════════════════════════════════════════════════════════════════


class TestContractSymbol:
    def test_call(self) -> None:
        assert parse_contract_symbol("AAPL240920C00150000") == (
            "AAPL", date(2024, 9, 20), OptionType.CALL, 150.0,
        )

    def test_put_fractional_strike(self) -> None:
        root, expiry, kind, strike = parse_contract_symbol("SPY241220P00450500")
        assert (root, expiry, kind) == ("SPY", date(2024, 12, 20), OptionType.PUT)
        assert strike == pytest.approx(450.5)

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_contract_symbol("AAPL")


# ══════════════════════════════════════════════════════════════════
# 2. ENDPOINTS
# ══════════════════════════════════════════════════════════════════


class TestEndpoints:
    @pytest.mark.asyncio
    async def test_fetch_news(self, config) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=NEWS_PAYLOAD)

        client = _client(config, handler)
        headlines = await client.fetch_news(25)

        req = seen[0]
        assert req.url.path == "/v1beta1/news"
        assert req.url.params["sort"] == "desc"
        assert req.url.params["limit"] == "25"
        assert req.headers["APCA-API-KEY-ID"] == "test-key"
        assert req.headers["APCA-API-SECRET-KEY"] == "test-secret"

        assert len(headlines) == 1
        assert headlines[0].id == "39874123"
        assert headlines[0].symbols == ("AAPL",)
        assert headlines[0].published_at is not None

    @pytest.mark.asyncio
    async def test_fetch_chain(self, config) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=SNAPSHOT_PAYLOAD)

        contracts = await _client(config, handler).fetch_chain("AAPL")

        assert seen[0].url.path == "/v1beta1/options/snapshots/AAPL"
        assert seen[0].url.params["feed"] == "indicative"
        assert [c.contract_symbol for c in contracts] == [
            "AAPL240920C00150000", "AAPL240920P00140000",
        ]

        call, put = contracts
        assert call.volume == 1834
        assert call.open_interest == 1834
        assert call.implied_volatility == pytest.approx(0.31)
        assert call.greeks is not None and call.greeks.delta == pytest.approx(0.52)
        assert call.premium == pytest.approx(2.55)

        assert put.option_type == OptionType.PUT
        assert put.strike_price == 140.0
        assert put.volume == 40
        assert put.greeks is None
        assert put.implied_volatility is None

    @pytest.mark.asyncio
    async def test_fetch_price_history(self, config, frozen_clock) -> None:
        bars = {"bars": [
            {"t": "2024-05-31T04:00:00Z", "c": 192.25, "v": 100},
            {"t": "2024-05-30T04:00:00Z", "c": 191.29, "v": 100},
            {"t": "2024-05-29T04:00:00Z", "c": 0, "v": 100},
        ]}

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v2/stocks/AAPL/bars"
            assert request.url.params["timeframe"] == "1Day"
            return httpx.Response(200, json=bars)

        client = _client(config, handler)
        client.clock = frozen_clock
        points = await client.fetch_price_history("AAPL")

        assert [p.close for p in points] == [191.29, 192.25]


class TestMalformedPayloads:
    @pytest.mark.asyncio
    async def test_bad_bars_are_skipped(self, config, frozen_clock) -> None:
        bars = {"bars": [
            {"t": "not-a-date", "c": 10.0},
            "garbage",
            {"t": "2024-05-31T04:00:00Z", "c": 192.25, "v": 100},
        ]}
        client = _client(config, lambda request: httpx.Response(200, json=bars))
        client.clock = frozen_clock
        points = await client.fetch_price_history("AAPL")

        assert [p.close for p in points] == [192.25]

    @pytest.mark.asyncio
    async def test_bad_news_item_is_skipped(self, config) -> None:
        payload = {"news": [
            {"id": 1, "headline": "Nvidia extends rally", "created_at": "yesterday-ish"},
            {"id": 2, "headline": "Apple's New AI Feature Boosts Stock", "symbols": ["AAPL"]},
        ]}
        client = _client(config, lambda request: httpx.Response(200, json=payload))
        headlines = await client.fetch_news(10)

        assert [h.id for h in headlines] == ["2"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        [{"t": "2024-05-31T04:00:00Z", "c": 1.0}],
        {"bars": {"t": "2024-05-31T04:00:00Z"}},
    ])
    async def test_wrong_shape_is_data_source_error(self, config, body) -> None:
        client = _client(config, lambda request: httpx.Response(200, json=body))
        with pytest.raises(DataSourceError, match="Unexpected"):
            await client.fetch_price_history("AAPL")

    @pytest.mark.asyncio
    async def test_wrong_snapshot_shape(self, config) -> None:
        client = _client(config, lambda request: httpx.Response(200, json={"snapshots": ["AAPL"]}))
        with pytest.raises(DataSourceError, match="snapshots"):
            await client.fetch_chain("AAPL")


# ══════════════════════════════════════════════════════════════════
# 3. RETRIES & ERRORS
# ══════════════════════════════════════════════════════════════════


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, config) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=NEWS_PAYLOAD)

        headlines = await _client(config, handler).fetch_news()
        assert calls["n"] == 3
        assert len(headlines) == 1

    @pytest.mark.asyncio
    async def test_network_errors_exhaust(self, config) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DataSourceError):
            await _client(config, handler).fetch_chain("AAPL")
        assert calls["n"] == config.HTTP_MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_auth_failure_is_not_retried(self, config) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(401, json={"message": "unauthorized"})

        with pytest.raises(BrokerageAuthError):
            await _client(config, handler).fetch_news()
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_client_error_fails_fast(self, config) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"message": "invalid symbol"})

        with pytest.raises(DataSourceError) as exc:
            await _client(config, handler).fetch_chain("???")
        assert not isinstance(exc.value, BrokerageAuthError)
