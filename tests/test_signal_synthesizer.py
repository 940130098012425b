"""Tests for the options signal synthesizer.

Run: python -m pytest tests/test_signal_synthesizer.py -v
"""

from __future__ import annotations

from datetime import date

import pytest

from conftest import LEAP_EXPIRY, NEAR_EXPIRY, TODAY
from sentiment_api.engine.fundamental_risk import assess_fundamental_risk
from sentiment_api.engine.signal_synthesizer import OptionsSignalSynthesizer, option_score
from sentiment_api.models.market_data import Greeks, OptionType
from sentiment_api.models.sentiment import SentimentLabel, SymbolSentiment
from sentiment_api.models.signals import SignalType, TimeHorizon


def _sentiment(symbol: str = "AAPL", label: SentimentLabel = SentimentLabel.POSITIVE, score: float = 0.94) -> SymbolSentiment:
    return SymbolSentiment(symbol=symbol, label=label, score=score, headline_count=1)


@pytest.fixture
def synth(config) -> OptionsSignalSynthesizer:
    return OptionsSignalSynthesizer(config)


# ══════════════════════════════════════════════════════════════════
# 1. DIRECTION & FILTERING
# ══════════════════════════════════════════════════════════════════


class TestDirection:
    def test_positive_sentiment_buys_call(self, synth, make_contract, make_prices) -> None:
        chain = [make_contract(), make_contract(option_type=OptionType.PUT, strike=145.0)]
        result = synth.synthesize(_sentiment(), chain, make_prices(), TODAY)

        assert result.signal is not None
        assert result.signal.signal_type == SignalType.BUY_CALL
        assert result.signal.sentiment_score == 0.94
        assert result.signal.contract_symbol == "AAPL240920C00150000"
        assert result.qualifying_contracts == 1

    def test_negative_sentiment_buys_put(self, synth, make_contract, make_prices) -> None:
        chain = [make_contract(), make_contract(option_type=OptionType.PUT, strike=145.0)]
        result = synth.synthesize(
            _sentiment(label=SentimentLabel.NEGATIVE, score=0.81), chain, make_prices(), TODAY,
        )
        assert result.signal.signal_type == SignalType.BUY_PUT
        assert result.signal.delta < 0

    def test_no_qualifying_contracts(self, synth, make_contract, make_prices) -> None:
        chain = [
            make_contract(volume=5),
            make_contract(strike=155.0, open_interest=10),
            make_contract(strike=160.0, ask=0.0, last=0.0, bid=0.0),
            make_contract(strike=165.0, expiration=date(2024, 5, 17)),
        ]
        result = synth.synthesize(_sentiment(), chain, make_prices(), TODAY)
        assert result.signal is None
        assert result.qualifying_contracts == 0

    def test_low_confidence_excluded(self, synth, make_contract) -> None:
        result = synth.synthesize(_sentiment(score=0.55), [make_contract()], [], TODAY)
        assert result.signal is None

    def test_neutral_excluded(self, synth, make_contract) -> None:
        result = synth.synthesize(
            _sentiment(label=SentimentLabel.NEUTRAL, score=0.99), [make_contract()], [], TODAY,
        )
        assert result.signal is None


# ══════════════════════════════════════════════════════════════════
# 2. CONTRACT SELECTION
# ══════════════════════════════════════════════════════════════════


class TestSelection:
    def test_short_term_preferred(self, synth, make_contract) -> None:
        chain = [make_contract(expiration=LEAP_EXPIRY, volume=9000), make_contract()]
        signal = synth.synthesize(_sentiment(), chain, [], TODAY).signal
        assert signal.time_horizon == TimeHorizon.SHORT_TERM
        assert signal.expiration_date == NEAR_EXPIRY

    def test_prefer_leaps(self, config, make_contract) -> None:
        config.PREFER_LEAPS = True
        chain = [make_contract(), make_contract(expiration=LEAP_EXPIRY)]
        signal = OptionsSignalSynthesizer(config).synthesize(_sentiment(), chain, [], TODAY).signal
        assert signal.time_horizon == TimeHorizon.LEAP

    def test_falls_back_to_other_bucket(self, synth, make_contract) -> None:
        signal = synth.synthesize(_sentiment(), [make_contract(expiration=LEAP_EXPIRY)], [], TODAY).signal
        assert signal.time_horizon == TimeHorizon.LEAP

    def test_highest_score_wins(self, synth, make_contract) -> None:
        thin = make_contract(strike=150.0, volume=100, open_interest=80)
        deep = make_contract(strike=155.0, volume=6000, open_interest=5000)
        signal = synth.synthesize(_sentiment(), [thin, deep], [], TODAY).signal
        assert signal.contract_symbol == deep.contract_symbol

    def test_tie_broken_by_contract_symbol(self, synth, make_contract) -> None:
        chain = [make_contract(strike=155.0), make_contract(strike=150.0)]
        signal = synth.synthesize(_sentiment(), chain, [], TODAY).signal
        assert signal.contract_symbol == "AAPL240920C00150000"

    def test_option_score_components(self, make_contract) -> None:
        c = make_contract(volume=2000, open_interest=1500, ask=0.5)
        # 0.3·0.9 + 2 (volume) + 2 (1/premium) + 1 (expiry sweet spot) + 2 (OI)
        assert option_score(c, 0.9, 109) == pytest.approx(7.27)
        assert option_score(c, 0.9, 10) == pytest.approx(4.27)


# ══════════════════════════════════════════════════════════════════
# 3. SIGNAL CONTENTS
# ══════════════════════════════════════════════════════════════════


class TestSignalContents:
    def test_bounds(self, synth, make_contract, make_prices) -> None:
        signal = synth.synthesize(_sentiment(), [make_contract()], make_prices(), TODAY).signal
        fm = signal.financial_metrics

        assert signal.max_loss == signal.entry_price == 2.5
        assert 0.0 <= signal.confidence <= 1.0
        assert 0.0 <= signal.risk_score <= 1.0
        assert -1.0 <= signal.expected_return <= 10.0
        assert 0.0 <= fm.kelly_fraction <= 1.0
        assert fm.expected_shortfall >= fm.var_95
        assert 0.0 <= fm.max_drawdown <= 1.0

    def test_reasoning_is_ordered(self, synth, make_contract, make_prices) -> None:
        signal = synth.synthesize(_sentiment(), [make_contract()], make_prices(), TODAY).signal
        assert signal.reasoning[0] == "Sentiment: Positive (confidence: 0.94)"
        assert signal.reasoning[1] == "High volume"
        assert "Strong sentiment" in signal.reasoning
        assert signal.reasoning[-1].startswith("Expected return")

    def test_deterministic(self, synth, make_contract, make_prices) -> None:
        chain = [make_contract(), make_contract(strike=155.0, ask=1.2)]
        a = synth.synthesize(_sentiment(), chain, make_prices(), TODAY).signal
        b = synth.synthesize(_sentiment(), chain, make_prices(), TODAY).signal
        assert a.model_dump_json() == b.model_dump_json()

    def test_feed_greeks_used_when_present(self, synth, make_contract) -> None:
        feed = Greeks(delta=0.61, gamma=0.03, theta=-0.07, vega=0.25)
        signal = synth.synthesize(_sentiment(), [make_contract(greeks=feed)], [], TODAY).signal
        assert signal.delta == 0.61
        assert signal.vega == 0.25

    def test_missing_iv_is_estimated(self, synth, make_contract, make_prices) -> None:
        signal = synth.synthesize(_sentiment(), [make_contract(iv=None)], make_prices(), TODAY).signal
        assert signal.implied_volatility > 0
        assert 0.0 < signal.delta < 1.0


class TestFundamentalRisk:
    def test_illiquid_penny_contract(self, make_contract) -> None:
        c = make_contract(ask=0.04, volume=20, open_interest=30, iv=1.2)
        score, factors = assess_fundamental_risk("AAPL", c, "TECH", spot=190.0)
        assert score == 1.0
        assert factors[0].startswith("Extremely low premium")

    def test_clean_large_cap(self, make_contract) -> None:
        score, factors = assess_fundamental_risk("AAPL", make_contract(), "TECH", spot=190.0)
        assert score == 0.0
        assert factors == []

    def test_sector_flags(self, make_contract) -> None:
        score, factors = assess_fundamental_risk("OSCR", make_contract(symbol="OSCR"), "OTHER", spot=15.0)
        assert score == pytest.approx(0.5)
        assert any("biotech" in f.lower() for f in factors)
