"""Analysis pipeline — one /analyze request end to end.

    news → symbol filter → sentiment → per-symbol chain + history → signals
         → market summary + portfolio risk → AnalysisResponse

Per-symbol brokerage calls run concurrently, bounded by a semaphore that
is shared by every request served from this pipeline instance. A failing
symbol is recorded and skipped; news, credential and classifier failures
abort the whole request.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sentiment_api.collectors.alpaca_client import MarketDataSource
from sentiment_api.collectors.news_filter import NewsFilter
from sentiment_api.config import Settings, settings
from sentiment_api.engine.aggregator import SignalAggregator
from sentiment_api.engine.signal_synthesizer import OptionsSignalSynthesizer, SynthesisResult
from sentiment_api.errors import AnalysisTimeoutError, BrokerageAuthError, DataSourceError
from sentiment_api.models.market_data import PricePoint
from sentiment_api.models.sentiment import SymbolSentiment
from sentiment_api.models.signals import AnalysisResponse, ExecutionMetadata, TradingSignal
from sentiment_api.services.sentiment_service import SentimentService
from sentiment_api.utils.logger import logger


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SymbolOutcome:
    symbol: str
    result: SynthesisResult | None = None
    prices: list[PricePoint] = field(default_factory=list)
    error: str | None = None


class AnalysisPipeline:
    """Wires the collectors, sentiment service and engine together."""

    def __init__(
        self,
        market_data: MarketDataSource,
        sentiment_service: SentimentService,
        synthesizer: OptionsSignalSynthesizer | None = None,
        aggregator: SignalAggregator | None = None,
        config: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
        news_filter: NewsFilter | None = None,
    ) -> None:
        self.config = config or settings
        self.market_data = market_data
        self.sentiment_service = sentiment_service
        self.synthesizer = synthesizer or OptionsSignalSynthesizer(self.config)
        self.aggregator = aggregator or SignalAggregator(self.config)
        self.news_filter = news_filter or NewsFilter()
        self.clock = clock or _utc_now
        self._semaphore = asyncio.Semaphore(self.config.MAX_CONCURRENT_REQUESTS)

    async def _analyze_symbol(self, sentiment: SymbolSentiment, today: date) -> SymbolOutcome:
        symbol = sentiment.symbol
        try:
            async with self._semaphore:
                chain = await self.market_data.fetch_chain(symbol)
                prices = await self.market_data.fetch_price_history(symbol)
        except BrokerageAuthError:
            raise
        except DataSourceError as e:
            logger.warning("%s: market data unavailable — %s", symbol, e)
            return SymbolOutcome(symbol=symbol, error=str(e))

        result = self.synthesizer.synthesize(sentiment, chain, prices, today)
        return SymbolOutcome(symbol=symbol, result=result, prices=list(prices))

    async def _analyze_symbols(
        self, sentiments: list[SymbolSentiment], today: date,
    ) -> list[SymbolOutcome]:
        tasks = [asyncio.create_task(self._analyze_symbol(s, today)) for s in sentiments]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    async def run(self) -> AnalysisResponse:
        started = time.perf_counter()
        now = self.clock()
        cfg = self.config

        # 1. News
        headlines = await self.market_data.fetch_news(cfg.NEWS_LIMIT)
        filtered = self.news_filter.group(headlines)

        # 2. Sentiment
        scores = await self.sentiment_service.score_headlines(filtered.by_symbol)
        aggregates = self.sentiment_service.aggregate_by_symbol(scores.results)
        directional = [
            agg for agg in aggregates.values()
            if agg.direction != 0 and agg.score >= cfg.MIN_SENTIMENT_CONFIDENCE
        ]
        logger.info(
            "Sentiment: %d symbols scored, %d with a confident directional view",
            len(aggregates), len(directional),
        )

        # 3. Per-symbol signals
        outcomes = await self._analyze_symbols(directional, now.date())

        signals: list[TradingSignal] = []
        histories: dict[str, list[PricePoint]] = {}
        symbol_errors: dict[str, str] = {}
        options_analyzed = 0
        for outcome in outcomes:
            if outcome.error is not None:
                symbol_errors[outcome.symbol] = outcome.error
                continue
            if outcome.result is None:
                continue
            options_analyzed += outcome.result.qualifying_contracts
            if outcome.result.signal is not None:
                signals.append(outcome.result.signal)
                histories[outcome.symbol] = outcome.prices
        signals.sort(key=lambda s: (-s.confidence, s.symbol))

        # 4. Aggregate
        summary = self.aggregator.build_market_summary(signals, now)
        risk = self.aggregator.build_risk_metrics(signals, histories)

        metadata = ExecutionMetadata(
            timestamp=now,
            processing_time_ms=(time.perf_counter() - started) * 1000.0,
            headlines_processed=scores.headlines_processed,
            symbols_analyzed=len(outcomes) - len(symbol_errors),
            options_analyzed=options_analyzed,
            signals_generated=len(signals),
            crypto_symbols_filtered=filtered.crypto_symbols_filtered,
            classifier_failures=scores.classifier_failures,
            symbol_errors=dict(sorted(symbol_errors.items())),
            sentiment_model=self.sentiment_service.model_name,
        )
        logger.info(
            "Analysis complete: %d signals from %d symbols in %.0fms",
            len(signals), metadata.symbols_analyzed, metadata.processing_time_ms,
        )
        return AnalysisResponse(
            market_summary=summary,
            trading_signals=signals,
            sentiment_analysis=scores.results,
            risk_metrics=risk,
            execution_metadata=metadata,
        )

    async def run_with_timeout(self, timeout: float | None = None) -> AnalysisResponse:
        """run() under REQUEST_TIMEOUT_SECS; in-flight fetches are cancelled on expiry."""
        timeout = timeout if timeout is not None else self.config.REQUEST_TIMEOUT_SECS
        try:
            return await asyncio.wait_for(self.run(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error("Analysis exceeded %.1fs deadline", timeout)
            raise AnalysisTimeoutError(
                f"Analysis did not complete within {timeout:.1f}s",
            ) from e
