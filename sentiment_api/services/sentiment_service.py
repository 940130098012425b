"""Sentiment classifier adapter — FinBERT inference off the event loop.

The model is loaded ONCE per process (500MB-2GB of weights) and shared by
every request. Inference is blocking, so batches run on a small bounded
ThreadPoolExecutor; the classifier serialises its own forward passes.

One bad headline never sinks the request: a failing batch is retried
item-by-item and only the items that still fail are dropped.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Protocol

from sentiment_api.config import Settings, settings
from sentiment_api.errors import ClassifierError, ClassifierUnavailableError
from sentiment_api.models.market_data import Headline
from sentiment_api.models.sentiment import (
    ClassifierOutput,
    SentimentLabel,
    SentimentResult,
    SymbolSentiment,
)
from sentiment_api.utils.logger import logger

_LABEL_NAMES: dict[str, SentimentLabel] = {
    "positive": SentimentLabel.POSITIVE,
    "pos": SentimentLabel.POSITIVE,
    "bullish": SentimentLabel.POSITIVE,
    "negative": SentimentLabel.NEGATIVE,
    "neg": SentimentLabel.NEGATIVE,
    "bearish": SentimentLabel.NEGATIVE,
    "neutral": SentimentLabel.NEUTRAL,
}


def normalise_label(raw: str) -> SentimentLabel:
    """Map a model's id2label string onto the three-way taxonomy."""
    label = _LABEL_NAMES.get(str(raw).strip().lower())
    if label is None:
        raise ClassifierError(f"Unrecognised classifier label: {raw!r}")
    return label


class SentimentClassifier(Protocol):
    """Blocking batch classifier. Must be safe to call from worker threads."""

    name: str

    def classify_batch(self, texts: Sequence[str]) -> list[ClassifierOutput]: ...


class FinBertClassifier:
    """Hugging Face sequence-classification model (FinBERT by default)."""

    def __init__(self, model_path: str | None = None, max_tokens: int = 512) -> None:
        self.name = model_path or settings.SENTIMENT_MODEL_PATH
        self.max_tokens = max_tokens
        self._lock = threading.Lock()
        self._tokenizer: Any = None
        self._model: Any = None
        self._labels: dict[int, SentimentLabel] = {}

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        """Load tokenizer + weights. Raises ClassifierUnavailableError on failure."""
        if self.is_loaded:
            return
        try:
            from transformers import AutoModelForSequenceClassification, AutoTokenizer
        except ImportError as e:
            raise ClassifierUnavailableError(
                "transformers is not installed; install the 'finbert' extra",
            ) from e

        logger.info("Loading sentiment model %s", self.name)
        try:
            tokenizer = AutoTokenizer.from_pretrained(self.name)
            model = AutoModelForSequenceClassification.from_pretrained(self.name)
        except Exception as e:
            # Missing weights, corrupt checkpoint, absent torch backend
            raise ClassifierUnavailableError(f"Could not load model {self.name}: {e}") from e

        model.eval()
        try:
            labels = {int(i): normalise_label(name) for i, name in model.config.id2label.items()}
        except ClassifierError as e:
            raise ClassifierUnavailableError(f"Model {self.name}: {e.message}") from e
        if set(labels.values()) != set(SentimentLabel):
            raise ClassifierUnavailableError(
                f"Model {self.name} does not emit positive/negative/neutral labels",
            )
        self._tokenizer, self._model, self._labels = tokenizer, model, labels
        logger.info("Sentiment model ready (%d labels)", len(labels))

    def classify_batch(self, texts: Sequence[str]) -> list[ClassifierOutput]:
        if not self.is_loaded:
            raise ClassifierUnavailableError("Sentiment model is not loaded")

        import torch

        with self._lock:
            inputs = self._tokenizer(
                list(texts),
                return_tensors="pt",
                truncation=True,
                max_length=self.max_tokens,
                padding=True,
            )
            with torch.no_grad():
                logits = self._model(**inputs).logits
            probs = torch.softmax(logits, dim=-1).tolist()

        outputs: list[ClassifierOutput] = []
        for row in probs:
            scores = {self._labels[i]: float(p) for i, p in enumerate(row)}
            best = max(range(len(row)), key=lambda i: row[i])
            outputs.append(
                ClassifierOutput(
                    label=self._labels[best],
                    confidence=min(max(float(row[best]), 0.0), 1.0),
                    scores=scores,
                )
            )
        return outputs


@dataclass
class ClassificationBatch:
    """Outputs keyed by input index, plus (index, reason) for dropped items."""

    outputs: dict[int, ClassifierOutput] = field(default_factory=dict)
    failures: list[tuple[int, str]] = field(default_factory=list)


@dataclass
class HeadlineScores:
    results: list[SentimentResult] = field(default_factory=list)
    headlines_processed: int = 0
    classifier_failures: int = 0


class SentimentService:
    """Owns the shared classifier and the inference worker pool."""

    def __init__(
        self,
        classifier: SentimentClassifier | None,
        config: Settings | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.classifier = classifier
        self.config = config or settings
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.SENTIMENT_WORKERS,
            thread_name_prefix="sentiment",
        )

    @property
    def model_name(self) -> str:
        return getattr(self.classifier, "name", "") if self.classifier else ""

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _validate(self, text: str) -> str | None:
        """Return a rejection reason, or None when the text is classifiable."""
        if not text or not text.strip():
            return "empty text"
        if len(text) > self.config.MAX_TEXT_LENGTH:
            return f"text too long (max {self.config.MAX_TEXT_LENGTH} characters)"
        return None

    async def _run(self, texts: list[str]) -> list[ClassifierOutput]:
        loop = asyncio.get_running_loop()
        outputs = await loop.run_in_executor(
            self._executor, self.classifier.classify_batch, texts,  # type: ignore[union-attr]
        )
        if len(outputs) != len(texts):
            raise ClassifierError(
                f"Classifier returned {len(outputs)} results for {len(texts)} texts",
            )
        return list(outputs)

    async def classify(self, texts: Sequence[str]) -> ClassificationBatch:
        """Classify texts in batches of SENTIMENT_BATCH_SIZE.

        Raises:
            ClassifierUnavailableError: no classifier is loaded.
        """
        if self.classifier is None:
            raise ClassifierUnavailableError("Sentiment model is not loaded")

        batch = ClassificationBatch()
        valid: list[int] = []
        for i, text in enumerate(texts):
            reason = self._validate(text)
            if reason:
                batch.failures.append((i, reason))
            else:
                valid.append(i)

        size = max(1, self.config.SENTIMENT_BATCH_SIZE)
        for start in range(0, len(valid), size):
            chunk = valid[start:start + size]
            try:
                outputs = await self._run([texts[i] for i in chunk])
            except ClassifierUnavailableError:
                raise
            except Exception as e:
                logger.warning(
                    "Sentiment batch of %d failed (%s) — retrying item by item", len(chunk), e,
                )
                for i in chunk:
                    try:
                        (output,) = await self._run([texts[i]])
                    except ClassifierUnavailableError:
                        raise
                    except Exception as item_err:
                        batch.failures.append((i, str(item_err)))
                    else:
                        batch.outputs[i] = output
                continue
            batch.outputs.update(zip(chunk, outputs))

        batch.failures.sort()
        if batch.failures:
            logger.warning("Sentiment: %d/%d texts failed classification", len(batch.failures), len(texts))
        return batch

    async def score_headlines(self, grouped: dict[str, list[Headline]]) -> HeadlineScores:
        """Classify each distinct headline once; fan results out per symbol."""
        unique: dict[str, Headline] = {}
        for headlines in grouped.values():
            for h in headlines:
                unique.setdefault(h.id, h)

        ids = list(unique)
        batch = await self.classify([unique[i].headline for i in ids])
        by_id = {ids[i]: out for i, out in batch.outputs.items()}

        scores = HeadlineScores(
            headlines_processed=len(ids),
            classifier_failures=len(batch.failures),
        )
        for symbol, headlines in grouped.items():
            for h in headlines:
                out = by_id.get(h.id)
                if out is None:
                    continue
                scores.results.append(
                    SentimentResult(
                        headline_id=h.id,
                        headline=h.headline,
                        symbol=symbol,
                        sentiment=out.label,
                        confidence=out.confidence,
                        published_at=h.published_at,
                    )
                )
        logger.info(
            "Sentiment: %d headlines classified → %d symbol results (%d failures)",
            len(by_id), len(scores.results), scores.classifier_failures,
        )
        return scores

    @staticmethod
    def aggregate_by_symbol(results: Sequence[SentimentResult]) -> dict[str, SymbolSentiment]:
        """Per-symbol dominant label by summed confidence; ties resolve to Neutral."""
        buckets: dict[str, list[SentimentResult]] = {}
        for r in results:
            buckets.setdefault(r.symbol, []).append(r)

        aggregates: dict[str, SymbolSentiment] = {}
        for symbol in sorted(buckets):
            rows = buckets[symbol]
            totals = {label: 0.0 for label in SentimentLabel}
            counts = {label: 0 for label in SentimentLabel}
            for r in rows:
                totals[r.sentiment] += r.confidence
                counts[r.sentiment] += 1

            best = max(totals.values())
            leaders = [label for label, total in totals.items() if total == best]
            label = leaders[0] if len(leaders) == 1 else SentimentLabel.NEUTRAL

            carrying = [r.confidence for r in rows if r.sentiment == label]
            score = sum(carrying) / len(carrying) if carrying else 0.0

            aggregates[symbol] = SymbolSentiment(
                symbol=symbol,
                label=label,
                score=min(max(score, 0.0), 1.0),
                headline_count=len(rows),
                positive_count=counts[SentimentLabel.POSITIVE],
                negative_count=counts[SentimentLabel.NEGATIVE],
                neutral_count=counts[SentimentLabel.NEUTRAL],
            )
        return aggregates
