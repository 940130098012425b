"""Shared fixtures: frozen clock, fake classifier, fake market data, factories."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import date, datetime, timedelta, timezone

import numpy as np
import pytest

from sentiment_api.config import Settings
from sentiment_api.models.market_data import (
    Greeks,
    Headline,
    OptionContract,
    OptionType,
    PricePoint,
)
from sentiment_api.models.sentiment import ClassifierOutput, SentimentLabel
from sentiment_api.models.signals import FinancialMetrics, SignalType, TimeHorizon, TradingSignal

FROZEN_NOW = datetime(2024, 6, 3, 14, 30, tzinfo=timezone.utc)
TODAY = FROZEN_NOW.date()
NEAR_EXPIRY = date(2024, 9, 20)    # 109 days out
LEAP_EXPIRY = date(2025, 9, 19)    # 473 days out


class FakeClassifier:
    """Deterministic stand-in for FinBERT: text → (label, confidence)."""

    name = "fake-finbert"

    def __init__(
        self,
        verdicts: dict[str, tuple[SentimentLabel, float]] | None = None,
        fail_on: Sequence[str] = (),
    ) -> None:
        self.verdicts = dict(verdicts or {})
        self.fail_on = set(fail_on)
        self.calls: list[list[str]] = []

    @property
    def texts_seen(self) -> list[str]:
        return [t for batch in self.calls for t in batch]

    def classify_batch(self, texts: Sequence[str]) -> list[ClassifierOutput]:
        self.calls.append(list(texts))
        outputs = []
        for text in texts:
            if text in self.fail_on:
                raise RuntimeError(f"cannot classify {text!r}")
            label, conf = self.verdicts.get(text, (SentimentLabel.NEUTRAL, 0.5))
            outputs.append(ClassifierOutput(label=label, confidence=conf, scores={label: conf}))
        return outputs


class FakeMarketData:
    """In-memory MarketDataSource with optional latency and per-symbol failures."""

    def __init__(
        self,
        news: Sequence[Headline] = (),
        chains: dict[str, list[OptionContract]] | None = None,
        histories: dict[str, list[PricePoint]] | None = None,
        errors: dict[str, Exception] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.news = list(news)
        self.chains = chains or {}
        self.histories = histories or {}
        self.errors = errors or {}
        self.delay = delay
        self.chain_calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_news(self, limit: int = 50) -> list[Headline]:
        if "__news__" in self.errors:
            raise self.errors["__news__"]
        return self.news[:limit]

    async def fetch_chain(self, symbol: str) -> list[OptionContract]:
        self.chain_calls.append(symbol)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if symbol in self.errors:
                raise self.errors[symbol]
            return list(self.chains.get(symbol, []))
        finally:
            self.in_flight -= 1

    async def fetch_price_history(self, symbol: str) -> list[PricePoint]:
        return list(self.histories.get(symbol, []))


def occ_symbol(symbol: str, expiration: date, option_type: OptionType, strike: float) -> str:
    cp = "C" if option_type == OptionType.CALL else "P"
    return f"{symbol}{expiration:%y%m%d}{cp}{int(round(strike * 1000)):08d}"


def build_contract(
    symbol: str = "AAPL",
    option_type: OptionType = OptionType.CALL,
    strike: float = 150.0,
    expiration: date = NEAR_EXPIRY,
    volume: int = 1500,
    open_interest: int = 2000,
    iv: float | None = 0.35,
    ask: float = 2.5,
    bid: float = 2.4,
    last: float = 2.45,
    greeks: Greeks | None = None,
) -> OptionContract:
    return OptionContract(
        contract_symbol=occ_symbol(symbol, expiration, option_type, strike),
        symbol=symbol,
        option_type=option_type,
        strike_price=strike,
        expiration_date=expiration,
        volume=volume,
        open_interest=open_interest,
        implied_volatility=iv,
        greeks=greeks,
        bid_price=bid,
        ask_price=ask,
        last_price=last,
    )


def build_prices(start: float = 150.0, n: int = 61, seed: int = 7, vol: float = 0.012) -> list[PricePoint]:
    rng = np.random.default_rng(seed)
    closes = start * np.exp(np.cumsum(rng.normal(0.0, vol, n)))
    return [
        PricePoint(timestamp=FROZEN_NOW - timedelta(days=n - i), close=float(c), volume=1_000_000)
        for i, c in enumerate(closes)
    ]


def build_signal(
    symbol: str = "AAPL",
    signal_type: SignalType = SignalType.BUY_CALL,
    confidence: float = 0.6,
    risk_score: float = 0.4,
    kelly: float = 0.03,
    var_95: float = 0.5,
    max_drawdown: float = 0.3,
    iv: float = 0.3,
) -> TradingSignal:
    return TradingSignal(
        symbol=symbol,
        signal_type=signal_type,
        confidence=confidence,
        sentiment_score=0.8,
        risk_score=risk_score,
        expected_return=0.2,
        max_loss=2.5,
        time_horizon=TimeHorizon.SHORT_TERM,
        contract_symbol=f"{symbol}240920C00150000",
        entry_price=2.5,
        strike_price=150.0,
        expiration_date=NEAR_EXPIRY,
        days_to_expiry=109,
        volume=1500,
        open_interest=2000,
        implied_volatility=iv,
        delta=0.5,
        gamma=0.02,
        theta=-0.05,
        vega=0.3,
        financial_metrics=FinancialMetrics(
            kelly_fraction=kelly,
            var_95=var_95,
            expected_shortfall=min(var_95 * 1.2, 1.0),
            max_drawdown=max_drawdown,
            volatility=iv,
        ),
        reasoning=["Sentiment: Positive (confidence: 0.80)"],
    )


@pytest.fixture
def config() -> Settings:
    """Settings pinned to known values, independent of the environment."""
    return Settings(
        ALPACA_API_KEY="test-key",
        ALPACA_SECRET_KEY="test-secret",
        ALPACA_DATA_URL="https://data.test",
        OPTIONS_FEED="indicative",
        HTTP_MAX_ATTEMPTS=3,
        MAX_CONCURRENT_REQUESTS=10,
        REQUEST_TIMEOUT_SECS=5.0,
        MAX_TEXT_LENGTH=10000,
        SENTIMENT_BATCH_SIZE=4,
        SENTIMENT_WORKERS=1,
        NEWS_LIMIT=50,
        OPTIONS_LIMIT=100,
        PRICE_HISTORY_DAYS=60,
        MIN_SENTIMENT_CONFIDENCE=0.6,
        MIN_OPTION_VOLUME=10,
        MIN_OPEN_INTEREST=50,
        LEAP_MIN_DAYS=365,
        PREFER_LEAPS=False,
        RISK_FREE_RATE=0.045,
        MAX_PORTFOLIO_EXPOSURE_PCT=20.0,
        MAX_POSITION_PCT=5.0,
    )


@pytest.fixture
def frozen_clock():
    return lambda: FROZEN_NOW


@pytest.fixture
def make_contract():
    return build_contract


@pytest.fixture
def make_prices():
    return build_prices


@pytest.fixture
def make_signal():
    return build_signal


@pytest.fixture
def make_classifier():
    return FakeClassifier


@pytest.fixture
def make_market():
    return FakeMarketData
