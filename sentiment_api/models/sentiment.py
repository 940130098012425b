"""Sentiment models — classifier output, per-headline results, per-symbol aggregates."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SentimentLabel(str, Enum):
    POSITIVE = "Positive"
    NEGATIVE = "Negative"
    NEUTRAL = "Neutral"


class ClassifierOutput(BaseModel):
    """Raw classifier answer for one text."""

    label: SentimentLabel
    confidence: float = Field(ge=0.0, le=1.0)
    scores: dict[SentimentLabel, float] = Field(default_factory=dict)


class SentimentResult(BaseModel):
    """Classifier verdict for one (headline, symbol) pair. Never mutated."""

    model_config = ConfigDict(frozen=True)

    headline_id: str
    headline: str
    symbol: str
    sentiment: SentimentLabel
    confidence: float = Field(ge=0.0, le=1.0)
    published_at: datetime | None = None


class SymbolSentiment(BaseModel):
    """Aggregate view of every headline mentioning a symbol."""

    symbol: str
    label: SentimentLabel
    score: float = Field(ge=0.0, le=1.0)
    headline_count: int
    positive_count: int = 0
    negative_count: int = 0
    neutral_count: int = 0

    @property
    def direction(self) -> int:
        """+1 bullish, -1 bearish, 0 no directional view."""
        if self.label == SentimentLabel.POSITIVE:
            return 1
        if self.label == SentimentLabel.NEGATIVE:
            return -1
        return 0
