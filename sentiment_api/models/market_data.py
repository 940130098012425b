"""Market data models — headlines, option contracts, price history."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Headline(BaseModel):
    """One news item as fetched from the news source. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    headline: str
    summary: str = ""
    source: str = ""
    published_at: datetime | None = None
    symbols: tuple[str, ...] = ()

    @field_validator("symbols", mode="before")
    @classmethod
    def _normalise_symbols(cls, value: object) -> tuple[str, ...]:
        if not value:
            return ()
        seen: list[str] = []
        for raw in value:  # type: ignore[union-attr]
            sym = str(raw).strip().upper()
            if sym and sym not in seen:
                seen.append(sym)
        return tuple(seen)


class OptionType(str, Enum):
    CALL = "call"
    PUT = "put"


class Greeks(BaseModel):
    """Option price sensitivities."""

    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0


class OptionContract(BaseModel):
    """A single option contract snapshot, fetched fresh every cycle."""

    contract_symbol: str
    symbol: str
    option_type: OptionType
    strike_price: float
    expiration_date: date
    volume: int = 0
    open_interest: int = 0
    implied_volatility: float | None = None
    greeks: Greeks | None = None
    bid_price: float = 0.0
    ask_price: float = 0.0
    last_price: float = 0.0
    underlying_price: float | None = None

    @property
    def mid_price(self) -> float:
        if self.bid_price > 0 and self.ask_price > 0:
            return (self.bid_price + self.ask_price) / 2
        return 0.0

    @property
    def premium(self) -> float:
        """Price paid to open a long position: ask, else last trade, else mid."""
        if self.ask_price > 0:
            return self.ask_price
        if self.last_price > 0:
            return self.last_price
        return self.mid_price

    @property
    def is_call(self) -> bool:
        return self.option_type == OptionType.CALL


class PricePoint(BaseModel):
    """Single daily bar close."""

    timestamp: datetime
    close: float = Field(gt=0)
    volume: int = 0


class OptionsQuery(BaseModel):
    """Query parameters accepted by the option snapshot endpoint."""

    feed: str | None = None
    type: OptionType | None = None
    limit: int = 100
    strike_price_gte: float | None = None
    strike_price_lte: float | None = None
    expiration_date: date | None = None
    expiration_date_gte: date | None = None
    expiration_date_lte: date | None = None
    root_symbol: str | None = None
    page_token: str | None = None

    def to_params(self, default_feed: str = "indicative") -> dict[str, str]:
        """Render as query-string params, skipping unset values."""
        params: dict[str, str] = {
            "feed": self.feed or default_feed,
            "limit": str(self.limit),
        }
        for key in (
            "strike_price_gte",
            "strike_price_lte",
            "expiration_date",
            "expiration_date_gte",
            "expiration_date_lte",
            "root_symbol",
            "page_token",
        ):
            value = getattr(self, key)
            if value is not None:
                params[key] = value.isoformat() if isinstance(value, date) else str(value)
        if self.type is not None:
            params["type"] = self.type.value
        return params
