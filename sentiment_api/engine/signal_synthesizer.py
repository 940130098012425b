"""Options signal synthesizer — sentiment + option chain → one TradingSignal.

Flow per symbol:
    1. Drop non-directional or low-confidence sentiment.
    2. Keep liquid contracts whose type matches the direction.
    3. Pick the preferred horizon bucket (short-term unless PREFER_LEAPS).
    4. Rank by option score; ties go to the lexically first contract symbol.
    5. Price the sentiment-implied move, derive metrics, risk and confidence.

Only long premium positions are emitted (BUY_CALL / BUY_PUT), so the
maximum loss is always the premium paid.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from sentiment_api.config import Settings, settings
from sentiment_api.engine import option_math
from sentiment_api.engine.financial_metrics import compute_financial_metrics
from sentiment_api.engine.fundamental_risk import assess_fundamental_risk
from sentiment_api.engine.sectors import SectorLookup, StaticSectorLookup
from sentiment_api.models.market_data import Greeks, OptionContract, PricePoint
from sentiment_api.models.sentiment import SymbolSentiment
from sentiment_api.models.signals import SignalType, TimeHorizon, TradingSignal
from sentiment_api.utils.logger import logger

MIN_EXPECTED_RETURN = -1.0
MAX_EXPECTED_RETURN = 10.0


@dataclass
class SynthesisResult:
    signal: TradingSignal | None
    qualifying_contracts: int = 0


@dataclass
class _Candidate:
    contract: OptionContract
    days: int
    score: float


def option_score(contract: OptionContract, sentiment_score: float, days: int) -> float:
    """Contract attractiveness: sentiment, volume, affordability, expiry, OI."""
    score = sentiment_score * 0.3
    score += min(contract.volume / 1000.0, 10.0)

    premium = contract.premium
    if premium > 0:
        score += min(1.0 / premium, 5.0)

    if days < 30:
        score -= 2.0   # theta burn
    elif days > 365:
        score -= 1.0   # less leverage
    else:
        score += 1.0

    oi = contract.open_interest
    if oi > 1000:
        score += 2.0
    elif oi > 100:
        score += 1.0
    elif oi < 50:
        score -= 1.0
    return score


def liquidity_factor(volume: int, open_interest: int) -> float:
    """0 (illiquid) … 1 (≥10k volume and OI)."""
    return (min(volume / 10000.0, 1.0) + min(open_interest / 10000.0, 1.0)) / 2.0


def confidence_penalty(fundamental_risk: float) -> float:
    if fundamental_risk > 0.7:
        return 0.3
    if fundamental_risk > 0.5:
        return 0.6
    if fundamental_risk > 0.3:
        return 0.8
    return 1.0


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return min(max(value, lo), hi)


class OptionsSignalSynthesizer:
    """Turns one symbol's aggregate sentiment and option chain into a signal."""

    def __init__(self, config: Settings | None = None, sectors: SectorLookup | None = None) -> None:
        self.config = config or settings
        self.sectors = sectors or StaticSectorLookup()

    def qualifying_contracts(
        self, chain: Sequence[OptionContract], bullish: bool, today: date,
    ) -> list[_Candidate]:
        out: list[_Candidate] = []
        for c in chain:
            if c.is_call != bullish:
                continue
            if c.volume < self.config.MIN_OPTION_VOLUME or c.open_interest < self.config.MIN_OPEN_INTEREST:
                continue
            if c.premium <= 0:
                continue
            days = option_math.days_to_expiry(c.expiration_date, today)
            if days <= 0:
                continue
            out.append(_Candidate(contract=c, days=days, score=0.0))
        return out

    def _select(self, candidates: list[_Candidate], sentiment_score: float) -> _Candidate:
        leaps = [c for c in candidates if c.days >= self.config.LEAP_MIN_DAYS]
        short = [c for c in candidates if c.days < self.config.LEAP_MIN_DAYS]
        preferred, fallback = (leaps, short) if self.config.PREFER_LEAPS else (short, leaps)
        bucket = preferred or fallback

        for cand in bucket:
            cand.score = option_score(cand.contract, sentiment_score, cand.days)
        return min(bucket, key=lambda c: (-c.score, c.contract.contract_symbol))

    @staticmethod
    def spot_price(contract: OptionContract, prices: Sequence[PricePoint]) -> float:
        if prices:
            return prices[-1].close
        if contract.underlying_price and contract.underlying_price > 0:
            return contract.underlying_price
        # At-the-money assumption
        return contract.strike_price

    def synthesize(
        self,
        sentiment: SymbolSentiment,
        chain: Sequence[OptionContract],
        prices: Sequence[PricePoint],
        today: date,
    ) -> SynthesisResult:
        symbol = sentiment.symbol
        if sentiment.direction == 0:
            logger.debug("%s: neutral sentiment — no signal", symbol)
            return SynthesisResult(signal=None)
        if sentiment.score < self.config.MIN_SENTIMENT_CONFIDENCE:
            logger.debug(
                "%s: sentiment %.2f below %.2f — no signal",
                symbol, sentiment.score, self.config.MIN_SENTIMENT_CONFIDENCE,
            )
            return SynthesisResult(signal=None)

        bullish = sentiment.direction > 0
        candidates = self.qualifying_contracts(chain, bullish, today)
        if not candidates:
            logger.info("%s: no qualifying %s contracts in %d", symbol, "call" if bullish else "put", len(chain))
            return SynthesisResult(signal=None)

        best = self._select(candidates, sentiment.score)
        signal = self._build_signal(sentiment, best, prices)
        logger.info(
            "%s: %s %s (score %.2f, confidence %.2f, %d qualifying)",
            symbol, signal.signal_type.value, best.contract.contract_symbol,
            best.score, signal.confidence, len(candidates),
        )
        return SynthesisResult(signal=signal, qualifying_contracts=len(candidates))

    def _build_signal(
        self,
        sentiment: SymbolSentiment,
        cand: _Candidate,
        prices: Sequence[PricePoint],
    ) -> TradingSignal:
        contract = cand.contract
        cfg = self.config
        p = sentiment.score
        is_call = contract.is_call
        premium = contract.premium
        strike = contract.strike_price
        spot = self.spot_price(contract, prices)
        t = option_math.year_fraction(cand.days)
        rf = cfg.RISK_FREE_RATE

        iv = contract.implied_volatility or option_math.estimate_implied_volatility(
            premium, spot, strike, t, is_call, rf,
        )
        greeks: Greeks = contract.greeks or option_math.black_scholes_greeks(
            spot, strike, iv, t, is_call, rf,
        )

        # ── Expected return under the sentiment-implied move ──────
        elasticity = option_math.option_elasticity(greeks.delta, spot, premium)
        target = option_math.sentiment_target_price(spot, p, iv, t, bullish=is_call)
        gain_if_right = option_math.payoff_at(target, strike, is_call) / premium - 1.0
        expected_return = _clamp(
            p * gain_if_right - (1.0 - p), MIN_EXPECTED_RETURN, MAX_EXPECTED_RETURN,
        )

        metrics = compute_financial_metrics(
            expected_return=expected_return,
            implied_volatility=iv,
            t=t,
            days=cand.days,
            elasticity=elasticity,
            probability=p,
            gain_if_right=gain_if_right,
            risk_free_rate=rf,
            prices=[pp.close for pp in prices],
        )

        # ── Risk ──────────────────────────────────────────────────
        sector = self.sectors.sector_for(sentiment.symbol)
        fundamental, risk_factors = assess_fundamental_risk(sentiment.symbol, contract, sector, spot)
        liquidity = liquidity_factor(contract.volume, contract.open_interest)
        otm = option_math.otm_distance(spot, strike, is_call)
        technical = (
            0.4 * min(iv, 1.0)
            + 0.3 * min(otm / 0.2, 1.0)
            + 0.2 * (1.0 - liquidity)
            + 0.1 * (1.0 - min(cand.days / 30.0, 1.0))
        )
        risk_score = _clamp(0.6 * technical + 0.4 * fundamental)

        # ── Confidence ────────────────────────────────────────────
        base_confidence = _clamp(
            p * 0.4
            + _clamp(cand.score / 10.0) * 0.3
            + _clamp(metrics.composite_score / 5.0) * 0.2
            + liquidity * 0.1
        )
        confidence = _clamp(base_confidence * confidence_penalty(fundamental))

        reasoning = [f"Sentiment: {sentiment.label.value} (confidence: {p:.2f})"]
        if contract.volume > 1000:
            reasoning.append("High volume")
        if premium < 1.0:
            reasoning.append("Low cost entry")
        if p > 0.7:
            reasoning.append("Strong sentiment")
        reasoning.extend(risk_factors[:2])
        if metrics.sharpe_ratio > 1.0:
            reasoning.append(f"Strong risk-adjusted returns (Sharpe {metrics.sharpe_ratio:.2f})")
        else:
            reasoning.append(
                f"Risk-adjusted quality: Sharpe {metrics.sharpe_ratio:.2f}, "
                f"composite {metrics.composite_score:.2f}"
            )
        reasoning.append(
            f"Expected return {expected_return:+.1%} vs max loss ${premium:.2f} per share"
        )

        return TradingSignal(
            symbol=sentiment.symbol,
            signal_type=SignalType.BUY_CALL if is_call else SignalType.BUY_PUT,
            confidence=confidence,
            sentiment_score=p,
            risk_score=risk_score,
            expected_return=expected_return,
            max_loss=premium,
            time_horizon=TimeHorizon.LEAP if cand.days >= cfg.LEAP_MIN_DAYS else TimeHorizon.SHORT_TERM,
            contract_symbol=contract.contract_symbol,
            entry_price=premium,
            strike_price=strike,
            expiration_date=contract.expiration_date,
            days_to_expiry=cand.days,
            volume=contract.volume,
            open_interest=contract.open_interest,
            implied_volatility=iv,
            delta=greeks.delta,
            gamma=greeks.gamma,
            theta=greeks.theta,
            vega=greeks.vega,
            financial_metrics=metrics,
            reasoning=reasoning,
        )
