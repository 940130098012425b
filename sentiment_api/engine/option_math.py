"""Option pricing helpers — Black-Scholes with scipy, no feed dependencies.

Used when the snapshot feed omits Greeks or implied volatility, and by the
synthesizer to model the payoff of a sentiment-implied move.
"""

from __future__ import annotations

import math
from datetime import date

from scipy import optimize
from scipy.stats import norm

from sentiment_api.models.market_data import Greeks

DEFAULT_IV = 0.3
MAX_ELASTICITY = 50.0
_DAYS_PER_YEAR = 365.0


def days_to_expiry(expiration: date, today: date) -> int:
    return (expiration - today).days


def year_fraction(days: int) -> float:
    return max(days, 0) / _DAYS_PER_YEAR


def _d1_d2(spot: float, strike: float, iv: float, t: float, rate: float) -> tuple[float, float]:
    sqrt_t = math.sqrt(t)
    d1 = (math.log(spot / strike) + (rate + 0.5 * iv * iv) * t) / (iv * sqrt_t)
    return d1, d1 - iv * sqrt_t


def _degenerate(spot: float, strike: float, iv: float, t: float) -> bool:
    return spot <= 0 or strike <= 0 or iv <= 0 or t <= 0


def black_scholes_price(
    spot: float, strike: float, iv: float, t: float, is_call: bool, rate: float = 0.0,
) -> float:
    """Theoretical premium; intrinsic value when the inputs are degenerate."""
    if _degenerate(spot, strike, iv, t):
        return payoff_at(spot, strike, is_call)
    d1, d2 = _d1_d2(spot, strike, iv, t, rate)
    discount = math.exp(-rate * t)
    if is_call:
        return spot * norm.cdf(d1) - strike * discount * norm.cdf(d2)
    return strike * discount * norm.cdf(-d2) - spot * norm.cdf(-d1)


def black_scholes_greeks(
    spot: float, strike: float, iv: float, t: float, is_call: bool, rate: float = 0.0,
) -> Greeks:
    """Delta, gamma, theta (per calendar day) and vega (per 1 vol point)."""
    if _degenerate(spot, strike, iv, t):
        return Greeks()

    d1, d2 = _d1_d2(spot, strike, iv, t, rate)
    sqrt_t = math.sqrt(t)
    pdf_d1 = norm.pdf(d1)
    discount = math.exp(-rate * t)

    delta = norm.cdf(d1) if is_call else norm.cdf(d1) - 1.0
    gamma = pdf_d1 / (spot * iv * sqrt_t)
    decay = -(spot * pdf_d1 * iv) / (2.0 * sqrt_t)
    if is_call:
        theta_year = decay - rate * strike * discount * norm.cdf(d2)
    else:
        theta_year = decay + rate * strike * discount * norm.cdf(-d2)
    vega = spot * pdf_d1 * sqrt_t / 100.0

    return Greeks(
        delta=float(delta),
        gamma=float(gamma),
        theta=float(theta_year / _DAYS_PER_YEAR),
        vega=float(vega),
    )


def estimate_implied_volatility(
    premium: float,
    spot: float,
    strike: float,
    t: float,
    is_call: bool,
    rate: float = 0.0,
    default: float = DEFAULT_IV,
) -> float:
    """Back out IV from a quoted premium; ``default`` when no root exists."""
    if premium <= 0 or _degenerate(spot, strike, 1.0, t):
        return default

    def objective(vol: float) -> float:
        return black_scholes_price(spot, strike, vol, t, is_call, rate) - premium

    lo, hi = 1e-4, 5.0
    if objective(lo) * objective(hi) > 0:
        return default
    try:
        return float(optimize.brentq(objective, lo, hi, xtol=1e-6, maxiter=100))
    except (ValueError, RuntimeError):
        return default


def moneyness(spot: float, strike: float) -> float:
    return spot / strike if strike > 0 else 1.0


def otm_distance(spot: float, strike: float, is_call: bool) -> float:
    """Fractional distance the underlying must travel to reach the strike (0 if ITM)."""
    if spot <= 0:
        return 0.0
    gap = strike - spot if is_call else spot - strike
    return max(gap, 0.0) / spot


def option_elasticity(delta: float, spot: float, premium: float) -> float:
    """% change in option price per 1% change in the underlying, capped."""
    if premium <= 0 or spot <= 0:
        return 0.0
    return min(abs(delta) * spot / premium, MAX_ELASTICITY)


def sentiment_target_price(
    spot: float, confidence: float, iv: float, t: float, bullish: bool,
) -> float:
    """Underlying price if the sentiment call plays out: a confidence-scaled 1σ move."""
    move = confidence * iv * math.sqrt(max(t, 0.0))
    return spot * (1.0 + move) if bullish else max(spot * (1.0 - move), 0.0)


def payoff_at(price: float, strike: float, is_call: bool) -> float:
    """Intrinsic value at expiry."""
    return max(price - strike, 0.0) if is_call else max(strike - price, 0.0)
