"""Alpaca market data client — news, option chain snapshots, daily bars.

Every call is a fresh pull; nothing is cached across requests. Uses a
module-level shared httpx.AsyncClient so concurrent per-symbol fetches
reuse one TCP connection pool.

Endpoints (data host, default https://data.alpaca.markets):
    GET /v1beta1/news?sort=desc&limit=N
    GET /v1beta1/options/snapshots/{symbol}
    GET /v2/stocks/{symbol}/bars?timeframe=1Day
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol

import httpx

from sentiment_api.config import Settings, settings
from sentiment_api.errors import BrokerageAuthError, DataSourceError
from sentiment_api.models.market_data import (
    Greeks,
    Headline,
    OptionContract,
    OptionsQuery,
    OptionType,
    PricePoint,
)
from sentiment_api.utils.logger import logger

# AAPL240920C00150000 → root, YYMMDD, C/P, strike × 1000
_OCC_RE = re.compile(r"^([A-Z][A-Z0-9.]{0,5})(\d{6})([CP])(\d{8})$")

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}

# Shared async HTTP client — reused across all brokerage calls.
# Created lazily on first use; closed by the API shutdown hook.
_shared_client: httpx.AsyncClient | None = None


def _get_shared_client() -> httpx.AsyncClient:
    """Get or create the shared httpx.AsyncClient."""
    global _shared_client  # noqa: PLW0603
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=10.0,
                read=60.0,
                write=10.0,
                pool=30.0,   # Waiting for a connection slot
            ),
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
            ),
        )
    return _shared_client


async def close_shared_client() -> None:
    """Close the shared client (idempotent)."""
    global _shared_client  # noqa: PLW0603
    if _shared_client is not None and not _shared_client.is_closed:
        await _shared_client.aclose()
    _shared_client = None


class MarketDataSource(Protocol):
    """Narrow pull interface the pipeline depends on."""

    async def fetch_news(self, limit: int) -> list[Headline]: ...

    async def fetch_chain(self, symbol: str) -> list[OptionContract]: ...

    async def fetch_price_history(self, symbol: str) -> list[PricePoint]: ...


def parse_contract_symbol(contract_symbol: str) -> tuple[str, date, OptionType, float]:
    """Split an OCC option symbol into (underlying, expiration, type, strike).

    Raises:
        ValueError: if the symbol is not in OCC format.
    """
    match = _OCC_RE.match(contract_symbol.strip().upper())
    if match is None:
        raise ValueError(f"Not an OCC option symbol: {contract_symbol!r}")
    root, yymmdd, cp, strike = match.groups()
    expiration = datetime.strptime(yymmdd, "%y%m%d").date()
    option_type = OptionType.CALL if cp == "C" else OptionType.PUT
    return root, expiration, option_type, int(strike) / 1000.0


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    f = _as_float(value)
    return int(f) if f is not None else None


def parse_snapshot(contract_symbol: str, snap: dict[str, Any]) -> OptionContract:
    """Build an OptionContract from one entry of the snapshots payload."""
    root, expiration, option_type, strike = parse_contract_symbol(contract_symbol)

    quote = snap.get("latestQuote") or {}
    trade = snap.get("latestTrade") or {}
    bar = snap.get("dailyBar") or {}

    volume = _as_int(bar.get("v"))
    if volume is None:
        volume = _as_int(trade.get("s")) or 0

    open_interest = _as_int(snap.get("openInterest"))
    if open_interest is None:
        open_interest = _as_int(snap.get("open_interest"))
    if open_interest is None:
        # Snapshot feeds often omit OI; volume stands in for it
        open_interest = volume

    raw_greeks = snap.get("greeks")
    greeks = None
    if isinstance(raw_greeks, dict) and raw_greeks:
        greeks = Greeks(**{
            k: _as_float(raw_greeks.get(k)) or 0.0
            for k in ("delta", "gamma", "theta", "vega")
        })

    iv = _as_float(snap.get("impliedVolatility"))
    if iv is None:
        iv = _as_float(snap.get("implied_volatility"))

    return OptionContract(
        contract_symbol=contract_symbol,
        symbol=root,
        option_type=option_type,
        strike_price=strike,
        expiration_date=expiration,
        volume=volume,
        open_interest=open_interest,
        implied_volatility=iv if iv and iv > 0 else None,
        greeks=greeks,
        bid_price=_as_float(quote.get("bp")) or 0.0,
        ask_price=_as_float(quote.get("ap")) or 0.0,
        last_price=_as_float(trade.get("p")) or 0.0,
        underlying_price=_as_float(snap.get("underlyingPrice")),
    )


def _rows(payload: dict[str, Any], key: str, path: str) -> list[Any]:
    rows = payload.get(key) or []
    if not isinstance(rows, list):
        raise DataSourceError(f"Unexpected '{key}' in {path}: {type(rows).__name__}")
    return rows


def parse_news_item(item: dict[str, Any]) -> Headline | None:
    text = (item.get("headline") or "").strip()
    if not text:
        return None
    return Headline(
        id=str(item.get("id", "")),
        headline=text,
        summary=item.get("summary") or "",
        source=item.get("source") or "",
        published_at=item.get("created_at") or item.get("updated_at"),
        symbols=item.get("symbols") or (),
    )


class AlpacaClient:
    """MarketDataSource backed by the Alpaca data API."""

    def __init__(
        self,
        config: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        backoff_base: float = 2.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or settings
        self._client = client
        self.backoff_base = backoff_base
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else _get_shared_client()

    @property
    def headers(self) -> dict[str, str]:
        return {
            "APCA-API-KEY-ID": self.config.ALPACA_API_KEY,
            "APCA-API-SECRET-KEY": self.config.ALPACA_SECRET_KEY,
            "accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.ALPACA_DATA_URL.rstrip('/')}{path}"

    async def _get_json(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        """GET with exponential backoff (2s, 4s, ...) on transient failures."""
        url = self._url(path)
        attempts = max(1, self.config.HTTP_MAX_ATTEMPTS)
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                resp = await self.client.get(url, params=params, headers=self.headers)
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "[Alpaca] %s attempt %d/%d failed: %s", path, attempt, attempts, last_error,
                )
            else:
                if resp.status_code in (401, 403):
                    raise BrokerageAuthError(
                        f"Alpaca rejected credentials ({resp.status_code}) for {path}",
                    )
                if resp.is_success:
                    try:
                        payload = resp.json()
                    except ValueError as e:
                        raise DataSourceError(f"Invalid JSON from {path}: {e}") from e
                    if not isinstance(payload, dict):
                        raise DataSourceError(f"Unexpected payload from {path}: {type(payload).__name__}")
                    return payload
                last_error = f"HTTP {resp.status_code}"
                if resp.status_code not in _RETRYABLE_STATUS:
                    raise DataSourceError(f"Alpaca {path} returned {last_error}")
                logger.warning(
                    "[Alpaca] %s attempt %d/%d returned %s", path, attempt, attempts, last_error,
                )

            if attempt < attempts:
                await asyncio.sleep(self.backoff_base ** attempt)

        raise DataSourceError(f"Alpaca {path} failed after {attempts} attempts: {last_error}")

    # ── News ──────────────────────────────────────────────────────

    async def fetch_news(self, limit: int | None = None) -> list[Headline]:
        limit = limit or self.config.NEWS_LIMIT
        payload = await self._get_json(
            "/v1beta1/news", {"sort": "desc", "limit": str(limit)},
        )
        headlines: list[Headline] = []
        for item in _rows(payload, "news", "/v1beta1/news"):
            try:
                headline = parse_news_item(item) if isinstance(item, dict) else None
            except ValueError as e:
                logger.debug("[Alpaca] Skipping news item %s: %s", item.get("id"), e)
                continue
            if headline is not None:
                headlines.append(headline)
        logger.info("[Alpaca] Fetched %d headlines", len(headlines))
        return headlines

    # ── Options ───────────────────────────────────────────────────

    async def fetch_chain(
        self, symbol: str, query: OptionsQuery | None = None,
    ) -> list[OptionContract]:
        query = query or OptionsQuery(limit=self.config.OPTIONS_LIMIT)
        payload = await self._get_json(
            f"/v1beta1/options/snapshots/{symbol}",
            query.to_params(default_feed=self.config.OPTIONS_FEED),
        )
        snapshots = payload.get("snapshots") or {}
        if not isinstance(snapshots, dict):
            raise DataSourceError(f"Unexpected 'snapshots' for {symbol}: {type(snapshots).__name__}")
        contracts: list[OptionContract] = []
        for contract_symbol, snap in sorted(snapshots.items()):
            try:
                contracts.append(parse_snapshot(contract_symbol, snap if isinstance(snap, dict) else {}))
            except ValueError as e:
                logger.debug("[Alpaca] Skipping snapshot %s: %s", contract_symbol, e)
        logger.info("[Alpaca] %s: %d option contracts", symbol, len(contracts))
        return contracts

    # ── Price history ─────────────────────────────────────────────

    async def fetch_price_history(
        self, symbol: str, days: int | None = None,
    ) -> list[PricePoint]:
        days = days or self.config.PRICE_HISTORY_DAYS
        # Calendar window wide enough to cover `days` trading sessions
        start = (self.clock() - timedelta(days=int(days * 1.5) + 7)).date()
        payload = await self._get_json(
            f"/v2/stocks/{symbol}/bars",
            {"timeframe": "1Day", "start": start.isoformat(), "limit": "10000"},
        )
        points: list[PricePoint] = []
        skipped = 0
        for bar in _rows(payload, "bars", f"/v2/stocks/{symbol}/bars"):
            if not isinstance(bar, dict):
                skipped += 1
                continue
            close = _as_float(bar.get("c"))
            if close is None or close <= 0 or not bar.get("t"):
                continue
            try:
                points.append(
                    PricePoint(timestamp=bar["t"], close=close, volume=_as_int(bar.get("v")) or 0)
                )
            except ValueError:
                skipped += 1
        if skipped:
            logger.warning("[Alpaca] %s: skipped %d malformed bars", symbol, skipped)
        points.sort(key=lambda p: p.timestamp)
        return points[-days:]
