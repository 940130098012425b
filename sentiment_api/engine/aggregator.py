"""Aggregator — reduces the signal set into a market summary and portfolio risk.

Portfolio risk treats each signal as a position sized by its (capped)
Kelly allocation. Correlations come from the underlyings' daily log
returns; pairs without enough overlapping history count as uncorrelated.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import date, datetime

import numpy as np

from sentiment_api.config import Settings, settings
from sentiment_api.engine.financial_metrics import log_returns
from sentiment_api.engine.sectors import SectorLookup, StaticSectorLookup
from sentiment_api.models.market_data import PricePoint
from sentiment_api.models.signals import (
    MarketSentiment,
    MarketSummary,
    RiskLevel,
    RiskMetrics,
    TradingSignal,
    VolatilityRegime,
)
from sentiment_api.utils.logger import logger

HIGH_CONFIDENCE = 0.7
MIN_OVERLAPPING_RETURNS = 3


def pearson(x: np.ndarray, y: np.ndarray) -> float:
    """Correlation of two equal-length return series."""
    if x.size != y.size or x.size < MIN_OVERLAPPING_RETURNS:
        return 0.0
    if np.std(x) == 0 or np.std(y) == 0:
        return 0.0
    r = float(np.corrcoef(x, y)[0, 1])
    if math.isnan(r):
        return 0.0
    return min(max(r, -1.0), 1.0)


def _closes_by_session(points: Sequence[PricePoint]) -> dict[date, float]:
    return {p.timestamp.date(): p.close for p in points}


def aligned_returns(
    a: Mapping[date, float], b: Mapping[date, float],
) -> tuple[np.ndarray, np.ndarray]:
    """Log returns of both series over the sessions they share."""
    sessions = sorted(a.keys() & b.keys())
    return (
        log_returns([a[d] for d in sessions]),
        log_returns([b[d] for d in sessions]),
    )


def risk_level(mean_risk: float) -> RiskLevel:
    if mean_risk < 0.3:
        return RiskLevel.LOW
    if mean_risk < 0.7:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def volatility_regime(mean_iv: float) -> VolatilityRegime:
    if mean_iv < 0.2:
        return VolatilityRegime.LOW
    if mean_iv < 0.4:
        return VolatilityRegime.NORMAL
    return VolatilityRegime.HIGH


class SignalAggregator:
    """Stateless reducer over one request's signals."""

    def __init__(self, config: Settings | None = None, sectors: SectorLookup | None = None) -> None:
        self.config = config or settings
        self.sectors = sectors or StaticSectorLookup()

    # ------------------------------------------------------------------
    # Market summary
    # ------------------------------------------------------------------
    def allocation_pct(self, signal: TradingSignal) -> float:
        """Per-position size in percent of capital: Kelly, capped per position."""
        return min(signal.kelly_fraction * 100.0, self.config.MAX_POSITION_PCT)

    def recommended_position_size(self, signals: Sequence[TradingSignal]) -> float:
        total = sum(self.allocation_pct(s) for s in signals)
        return min(total, self.config.MAX_PORTFOLIO_EXPOSURE_PCT)

    def build_market_summary(self, signals: Sequence[TradingSignal], now: datetime) -> MarketSummary:
        total = len(signals)
        bullish = sum(1 for s in signals if s.signal_type.is_bullish)
        bearish = sum(1 for s in signals if s.signal_type.is_bearish)

        if bullish > bearish:
            sentiment = MarketSentiment.BULLISH
        elif bearish > bullish:
            sentiment = MarketSentiment.BEARISH
        else:
            sentiment = MarketSentiment.NEUTRAL

        if total:
            weights = [1.0 - s.risk_score for s in signals]
            if sum(weights) > 0:
                overall = sum(w * s.confidence for w, s in zip(weights, signals)) / sum(weights)
            else:
                overall = sum(s.confidence for s in signals) / total
            mean_risk = sum(s.risk_score for s in signals) / total
        else:
            overall = 0.0
            mean_risk = 0.5

        return MarketSummary(
            timestamp=now,
            total_signals=total,
            bullish_signals=bullish,
            bearish_signals=bearish,
            high_confidence_signals=sum(1 for s in signals if s.confidence > HIGH_CONFIDENCE),
            market_sentiment=sentiment,
            overall_confidence=min(max(overall, 0.0), 1.0),
            risk_level=risk_level(mean_risk),
            recommended_position_size=self.recommended_position_size(signals),
        )

    # ------------------------------------------------------------------
    # Portfolio risk
    # ------------------------------------------------------------------
    def position_weights(self, signals: Sequence[TradingSignal]) -> list[float]:
        """Allocations normalised to sum to 1 (equal weights if all are zero)."""
        if not signals:
            return []
        alloc = [self.allocation_pct(s) for s in signals]
        total = sum(alloc)
        if total <= 0:
            return [1.0 / len(signals)] * len(signals)
        return [a / total for a in alloc]

    @staticmethod
    def correlation_matrix(
        symbols: Sequence[str],
        price_histories: Mapping[str, Sequence[PricePoint]],
    ) -> dict[str, dict[str, float]]:
        """Symmetric pairwise correlation with a unit diagonal, keys sorted.

        Each pair is correlated over the sessions both histories contain.
        """
        ordered = sorted(set(symbols))
        closes = {sym: _closes_by_session(price_histories.get(sym, ())) for sym in ordered}
        matrix: dict[str, dict[str, float]] = {sym: {} for sym in ordered}
        for i, a in enumerate(ordered):
            matrix[a][a] = 1.0
            for b in ordered[i + 1:]:
                r = pearson(*aligned_returns(closes[a], closes[b]))
                matrix[a][b] = r
                matrix[b][a] = r
        return {sym: dict(sorted(row.items())) for sym, row in matrix.items()}

    def build_risk_metrics(
        self,
        signals: Sequence[TradingSignal],
        price_histories: Mapping[str, Sequence[PricePoint]],
    ) -> RiskMetrics:
        if not signals:
            return RiskMetrics()

        weights = self.position_weights(signals)
        symbols = [s.symbol for s in signals]
        corr = self.correlation_matrix(symbols, price_histories)

        # Portfolio VaR: sqrt(vᵀ C v) with v_i = w_i · VaR_i
        v = np.array([w * s.financial_metrics.var_95 for w, s in zip(weights, signals)])
        c = np.array([[corr[a][b] for b in symbols] for a in symbols])
        portfolio_var = math.sqrt(max(float(v @ c @ v), 0.0))

        ordered = sorted(corr)
        off_diag = [corr[a][b] for i, a in enumerate(ordered) for b in ordered[i + 1:]]
        mean_corr = sum(off_diag) / len(off_diag) if off_diag else 0.0
        concentration = sum(w * w for w in weights)
        diversification = (1.0 - concentration) * (1.0 - max(mean_corr, 0.0))

        exposure: dict[str, float] = {}
        for w, s in zip(weights, signals):
            sector = self.sectors.sector_for(s.symbol)
            exposure[sector] = exposure.get(sector, 0.0) + w

        mean_iv = sum(s.implied_volatility for s in signals) / len(signals)

        metrics = RiskMetrics(
            portfolio_var=portfolio_var,
            max_portfolio_drawdown=max(s.financial_metrics.max_drawdown for s in signals),
            correlation_matrix=corr,
            diversification_score=min(max(diversification, 0.0), 1.0),
            sector_exposure=dict(sorted(exposure.items())),
            volatility_regime=volatility_regime(mean_iv),
        )
        logger.info(
            "Portfolio risk: VaR %.3f, diversification %.2f, %d sectors, regime %s",
            metrics.portfolio_var, metrics.diversification_score,
            len(metrics.sector_exposure), metrics.volatility_regime.value,
        )
        return metrics
