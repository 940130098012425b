"""Signal models — trading signals, market summary, portfolio risk, /analyze response.

Every entity here is created fresh inside one /analyze request and
discarded after the response is sent.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from sentiment_api.models.sentiment import SentimentResult


class SignalType(str, Enum):
    BUY_CALL = "BUY_CALL"
    BUY_PUT = "BUY_PUT"
    SELL_CALL = "SELL_CALL"
    SELL_PUT = "SELL_PUT"

    @property
    def is_bullish(self) -> bool:
        return self in (SignalType.BUY_CALL, SignalType.SELL_PUT)

    @property
    def is_bearish(self) -> bool:
        return self in (SignalType.BUY_PUT, SignalType.SELL_CALL)


class TimeHorizon(str, Enum):
    SHORT_TERM = "SHORT_TERM"
    LEAP = "LEAP"


class MarketSentiment(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class VolatilityRegime(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class FinancialMetrics(BaseModel):
    """Risk/return statistics for one signal's selected contract."""

    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = Field(default=0.0, ge=0.0, le=1.0)
    volatility: float = Field(default=0.0, ge=0.0)
    composite_score: float = 0.0
    kelly_fraction: float = 0.0
    var_95: float = Field(default=0.0, ge=0.0)
    expected_shortfall: float = Field(default=0.0, ge=0.0)

    @field_validator("kelly_fraction", mode="before")
    @classmethod
    def _clip_kelly(cls, value: float) -> float:
        """Never recommend more than the whole bankroll, never a negative bet."""
        return min(max(float(value), 0.0), 1.0)


class TradingSignal(BaseModel):
    """One ranked, risk-adjusted recommendation — at most one per symbol per cycle."""

    symbol: str
    signal_type: SignalType
    confidence: float = Field(ge=0.0, le=1.0)
    sentiment_score: float = Field(ge=0.0, le=1.0)
    risk_score: float = Field(ge=0.0, le=1.0)
    expected_return: float
    max_loss: float = Field(ge=0.0)
    time_horizon: TimeHorizon
    contract_symbol: str
    entry_price: float
    strike_price: float
    expiration_date: date
    days_to_expiry: int
    volume: int
    open_interest: int
    implied_volatility: float
    delta: float
    gamma: float
    theta: float
    vega: float
    financial_metrics: FinancialMetrics
    reasoning: list[str] = Field(default_factory=list)

    @property
    def kelly_fraction(self) -> float:
        return self.financial_metrics.kelly_fraction


class MarketSummary(BaseModel):
    """Roll-up of the full signal set."""

    timestamp: datetime
    total_signals: int = 0
    bullish_signals: int = 0
    bearish_signals: int = 0
    high_confidence_signals: int = 0
    market_sentiment: MarketSentiment = MarketSentiment.NEUTRAL
    overall_confidence: float = 0.0
    risk_level: RiskLevel = RiskLevel.MEDIUM
    recommended_position_size: float = 0.0


class RiskMetrics(BaseModel):
    """Portfolio-level risk of holding every signal at its recommended weight."""

    portfolio_var: float = 0.0
    max_portfolio_drawdown: float = 0.0
    correlation_matrix: dict[str, dict[str, float]] = Field(default_factory=dict)
    diversification_score: float = 0.0
    sector_exposure: dict[str, float] = Field(default_factory=dict)
    volatility_regime: VolatilityRegime = VolatilityRegime.NORMAL


class ExecutionMetadata(BaseModel):
    """Bookkeeping about how the request was served."""

    timestamp: datetime
    processing_time_ms: float = 0.0
    headlines_processed: int = 0
    symbols_analyzed: int = 0
    options_analyzed: int = 0
    signals_generated: int = 0
    crypto_symbols_filtered: int = 0
    classifier_failures: int = 0
    symbol_errors: dict[str, str] = Field(default_factory=dict)
    # No cross-request caching exists
    cache_hit_rate: float = 0.0
    sentiment_model: str = ""


class AnalysisResponse(BaseModel):
    """Body of GET /analyze."""

    market_summary: MarketSummary
    trading_signals: list[TradingSignal] = Field(default_factory=list)
    sentiment_analysis: list[SentimentResult] = Field(default_factory=list)
    risk_metrics: RiskMetrics
    execution_metadata: ExecutionMetadata
