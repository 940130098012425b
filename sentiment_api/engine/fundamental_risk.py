"""Fundamental risk screen — flags contracts that are cheap for a reason.

Scores are additive and capped at 1.0; the factor list is ordered by the
order the checks run, so the first entries are the most basic problems.
"""

from __future__ import annotations

from sentiment_api.models.market_data import OptionContract

_BIOTECH_MARKERS = ("BIO", "PHARMA", "THERA", "GEN", "CELL", "MED", "CURE", "LIFE", "HEALTH")
_SMALL_BIOTECH = frozenset({"ATYR", "OSCR", "RCAT", "AREC", "HYLN", "UUUU"})
_ENERGY_MARKERS = ("OIL", "GAS", "ENERGY", "POWER", "FUEL", "DRILL")
_MATERIALS_MARKERS = ("MINING", "METAL", "GOLD", "SILVER", "COPPER", "STEEL")

_LARGE_CAP_SHARES = {
    "AAPL": 15e9, "MSFT": 7.4e9, "GOOGL": 12e9, "AMZN": 10e9, "TSLA": 3.2e9,
    "NVDA": 24e9, "META": 2.5e9, "NIO": 2e9, "BAC": 7.8e9,
}
_DEFAULT_SHARES = 50e6
SMALL_CAP_THRESHOLD = 50_000_000.0


def sector_risk(symbol: str, sector: str) -> tuple[float, list[str]]:
    score = 0.0
    factors: list[str] = []
    sym = symbol.upper()

    if sym in _SMALL_BIOTECH or any(m in sym for m in _BIOTECH_MARKERS):
        score += 0.3
        factors.append("Biotech sector - high regulatory and clinical trial risk")
    if sym in _SMALL_BIOTECH:
        score += 0.2
        factors.append("Small biotech - extreme volatility and binary outcomes")
    if sector == "ENERGY" or any(m in sym for m in _ENERGY_MARKERS):
        score += 0.15
        factors.append("Energy sector - commodity price volatility")
    if any(m in sym for m in _MATERIALS_MARKERS):
        score += 0.2
        factors.append("Materials sector - commodity and economic cycle risk")
    return score, factors


def estimate_market_cap(symbol: str, spot: float) -> float:
    """Very rough: spot × a hard-coded share count."""
    return spot * _LARGE_CAP_SHARES.get(symbol.upper(), _DEFAULT_SHARES)


def assess_fundamental_risk(
    symbol: str,
    contract: OptionContract,
    sector: str,
    spot: float | None = None,
) -> tuple[float, list[str]]:
    """Return (score in [0, 1], risk factor descriptions)."""
    score = 0.0
    factors: list[str] = []
    premium = contract.premium

    if premium < 0.05:
        score += 0.3
        factors.append("Extremely low premium (<$0.05) - likely worthless")
    elif premium < 0.10:
        score += 0.2
        factors.append("Very low premium (<$0.10) - lottery-ticket pricing")

    if contract.volume < 100:
        score += 0.25
        factors.append("Very low volume (<100) - execution risk")
    elif contract.volume < 500:
        score += 0.15
        factors.append("Low volume (<500) - liquidity concerns")

    if contract.open_interest < 50:
        score += 0.2
        factors.append("Very low open interest (<50) - limited liquidity")

    s_score, s_factors = sector_risk(symbol, sector)
    score += s_score
    factors.extend(s_factors)

    iv = contract.implied_volatility or 0.0
    if iv > 1.0:
        score += 0.3
        factors.append("Extreme volatility (>100%) - high risk")
    elif iv > 0.8:
        score += 0.2
        factors.append("Very high volatility (>80%) - elevated risk")

    if spot is not None and spot > 0 and estimate_market_cap(symbol, spot) < SMALL_CAP_THRESHOLD:
        score += 0.25
        factors.append("Small cap stock (<$50M) - high volatility risk")

    return min(score, 1.0), factors
