"""Financial metrics for a single option position — pure numpy/scipy math.

The option's holding-period return is modelled as normal with mean
``expected_return`` and standard deviation

    return_std = min(elasticity × IV × √T, 3.0)

i.e. the underlying's 1σ move over the holding period, levered by the
option's elasticity. Sharpe, Sortino, VaR and ES all derive from that
distribution; max drawdown comes from the underlying's price history.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np
from scipy.stats import norm

from sentiment_api.models.signals import FinancialMetrics

MAX_RETURN_STD = 3.0
Z_95 = float(norm.ppf(0.95))
_TAIL = 0.05


# ------------------------------------------------------------------
# Price-series helpers
# ------------------------------------------------------------------
def log_returns(prices: Sequence[float] | np.ndarray) -> np.ndarray:
    arr = np.asarray(prices, dtype=float)
    if arr.size < 2 or np.any(arr <= 0):
        return np.array([], dtype=float)
    return np.diff(np.log(arr))


def max_drawdown(prices: Sequence[float] | np.ndarray) -> float:
    """Largest peak-to-trough decline as a positive fraction."""
    arr = np.asarray(prices, dtype=float)
    if arr.size < 2:
        return 0.0
    peak = np.maximum.accumulate(arr)
    dd = (arr - peak) / peak
    return abs(float(np.min(dd)))


# ------------------------------------------------------------------
# Ratios
# ------------------------------------------------------------------
def sharpe_ratio(expected_return: float, risk_free_rate: float, t: float, return_std: float) -> float:
    if return_std <= 0:
        return 0.0
    return (expected_return - risk_free_rate * t) / return_std


def downside_deviation(return_std: float) -> float:
    """Half-normal downside deviation, capped at a total loss."""
    return min(return_std / math.sqrt(2.0), 1.0)


def sortino_ratio(expected_return: float, return_std: float) -> float:
    dd = downside_deviation(return_std)
    return expected_return / dd if dd > 0 else 0.0


def calmar_ratio(expected_return: float, drawdown: float) -> float:
    return expected_return / drawdown if drawdown > 0 else 0.0


def kelly_fraction(probability: float, payoff_ratio: float) -> float:
    """Kelly bet size f* = (p·b − q) / b, clipped to [0, 1]."""
    if payoff_ratio <= 0:
        return 0.0
    f = (probability * payoff_ratio - (1.0 - probability)) / payoff_ratio
    return min(max(f, 0.0), 1.0)


# ------------------------------------------------------------------
# Value at Risk (parametric normal)
# ------------------------------------------------------------------
def value_at_risk_95(mean: float, std: float) -> float:
    """Loss (fraction of premium) not exceeded with 95% probability."""
    return min(max(0.0, -(mean - Z_95 * std)), 1.0)


def expected_shortfall_95(mean: float, std: float) -> float:
    """Mean loss in the worst 5% of outcomes."""
    return min(max(0.0, -(mean - std * float(norm.pdf(Z_95)) / _TAIL)), 1.0)


def composite_score(
    sharpe: float, sortino: float, calmar: float, volatility: float, days: int,
) -> float:
    """Volatility- and horizon-weighted blend of the capped ratios (max 5.0)."""
    sharpe_w, sortino_w, calmar_w = 0.4, 0.4, 0.2
    if volatility > 0.4:
        # Downside protection matters more in a high-vol regime
        sharpe_w, sortino_w, calmar_w = 0.3, 0.5, 0.2
    elif volatility < 0.2:
        sharpe_w, sortino_w, calmar_w = 0.5, 0.3, 0.2
    if days > 90:
        sharpe_w, sortino_w, calmar_w = 0.35, 0.35, 0.3

    raw = (
        sharpe_w * min(sharpe, 3.0)
        + sortino_w * min(sortino, 4.0)
        + calmar_w * min(calmar, 10.0)
    )
    return min(raw, 5.0)


def compute_financial_metrics(
    *,
    expected_return: float,
    implied_volatility: float,
    t: float,
    days: int,
    elasticity: float,
    probability: float,
    gain_if_right: float,
    risk_free_rate: float,
    prices: Sequence[float] | np.ndarray | None = None,
) -> FinancialMetrics:
    """Full metric block for one contract.

    Args:
        expected_return: modelled return on premium (fraction).
        implied_volatility: annualised IV of the contract.
        t: time to expiry in years.
        days: calendar days to expiry.
        elasticity: option elasticity (|Δ|·S/premium).
        probability: probability the sentiment call is right.
        gain_if_right: return on premium if it is (Kelly odds).
        risk_free_rate: annual risk-free rate.
        prices: underlying closes, oldest first.
    """
    return_std = min(elasticity * implied_volatility * math.sqrt(max(t, 0.0)), MAX_RETURN_STD)

    if prices is not None and len(prices) >= 2:
        drawdown = min(max(max_drawdown(prices) * elasticity, 0.0), 1.0)
    else:
        drawdown = min(return_std, 1.0)

    sharpe = sharpe_ratio(expected_return, risk_free_rate, t, return_std)
    sortino = sortino_ratio(expected_return, return_std)
    calmar = calmar_ratio(expected_return, drawdown)

    return FinancialMetrics(
        sharpe_ratio=sharpe,
        sortino_ratio=sortino,
        calmar_ratio=calmar,
        max_drawdown=drawdown,
        volatility=max(implied_volatility, 0.0),
        composite_score=composite_score(sharpe, sortino, calmar, implied_volatility, days),
        kelly_fraction=kelly_fraction(probability, gain_if_right),
        var_95=value_at_risk_95(expected_return, return_std),
        expected_shortfall=expected_shortfall_95(expected_return, return_std),
    )
