"""News & symbol filter — groups headlines by equity symbol, drops crypto.

Symbols come from the news source's own tags when present. Untagged
headlines get symbols extracted from text ($CASHTAGS always, bare
upper-case tokens only when they belong to a known symbol universe).
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from sentiment_api.models.market_data import Headline
from sentiment_api.utils.logger import logger

# Symbols that don't have listed equity options
CRYPTO_SYMBOLS: frozenset[str] = frozenset({
    "BTC", "ETH", "BTCUSD", "ETHUSD", "SHIBUSD", "LTCUSD", "ADA", "DOT", "LINK", "UNI",
    "BCH", "LTC", "XRP", "XLM", "EOS", "TRX", "VET", "MATIC", "AVAX", "SOL", "ATOM", "FTM",
    "NEAR", "ALGO", "ICP", "FIL", "THETA", "XTZ", "AAVE", "COMP", "MKR", "SNX", "CRV", "YFI",
    "SUSHI", "1INCH", "BAL", "REN", "ZRX", "BAND", "KNC", "STORJ", "MANA", "SAND", "ENJ", "CHZ",
    "HOT", "DOGE", "SHIB", "BABYDOGE", "SAFEMOON", "ELON", "FLOKI", "PEPE", "BONK", "WIF",
    "USDT", "USDC",
})

# Quote currencies used for crypto pairs: BTCUSD, BTC-USD, BTC/USD, ETHUSDT
_PAIR_RE = re.compile(r"^([A-Z0-9]{2,10})[-/]?(USD|USDT|USDC)$")
_CASHTAG_RE = re.compile(r"\$([A-Z]{1,5}(?:\.[A-Z])?)\b")
_WORD_RE = re.compile(r"\b([A-Z]{1,5})\b")


def is_crypto_symbol(symbol: str) -> bool:
    """True for denylisted coins and for any coin/USD-style pair."""
    sym = symbol.strip().upper()
    if sym in CRYPTO_SYMBOLS:
        return True
    if "-" in sym or "/" in sym:
        # Equities never carry a dash/slash quote suffix
        return bool(_PAIR_RE.match(sym))
    match = _PAIR_RE.match(sym)
    if match is None:
        return False
    base = match.group(1)
    # Plain tickers ending in USD are real equities only if the base isn't a coin
    return base in CRYPTO_SYMBOLS or len(sym) > 5


def extract_symbols(text: str, universe: frozenset[str] | None = None) -> list[str]:
    """Find ticker mentions in free text, in order of first appearance."""
    found: list[str] = []
    for match in _CASHTAG_RE.finditer(text):
        sym = match.group(1)
        if sym not in found:
            found.append(sym)
    if universe:
        for match in _WORD_RE.finditer(text):
            sym = match.group(1)
            if sym in universe and sym not in found:
                found.append(sym)
    return found


@dataclass
class FilteredNews:
    """Output of the filter stage."""

    by_symbol: dict[str, list[Headline]] = field(default_factory=dict)
    crypto_symbols_filtered: int = 0
    headlines_seen: int = 0
    headlines_untagged: int = 0

    @property
    def symbols(self) -> list[str]:
        return list(self.by_symbol)


class NewsFilter:
    """Maps headlines to the equity symbols they mention."""

    def __init__(self, universe: Iterable[str] | None = None) -> None:
        self.universe = frozenset(s.upper() for s in universe) if universe else None

    def symbols_for(self, headline: Headline) -> list[str]:
        if headline.symbols:
            return list(headline.symbols)
        return extract_symbols(f"{headline.headline} {headline.summary}", self.universe)

    def group(self, headlines: Iterable[Headline]) -> FilteredNews:
        """Build symbol → headlines, excluding crypto symbols.

        Symbols are returned sorted; headlines keep their input order.
        """
        grouped: dict[str, list[Headline]] = {}
        crypto: set[str] = set()
        result = FilteredNews()

        for headline in headlines:
            result.headlines_seen += 1
            if not headline.headline.strip():
                continue
            symbols = self.symbols_for(headline)
            if not headline.symbols:
                result.headlines_untagged += 1
            for sym in symbols:
                if is_crypto_symbol(sym):
                    crypto.add(sym)
                    continue
                bucket = grouped.setdefault(sym, [])
                if all(h.id != headline.id for h in bucket):
                    bucket.append(headline)

        result.by_symbol = {sym: grouped[sym] for sym in sorted(grouped)}
        result.crypto_symbols_filtered = len(crypto)

        logger.info(
            "News filter: %d headlines → %d symbols (%d crypto filtered, %d untagged)",
            result.headlines_seen,
            len(result.by_symbol),
            result.crypto_symbols_filtered,
            result.headlines_untagged,
        )
        if crypto:
            logger.debug("Crypto symbols dropped: %s", ", ".join(sorted(crypto)))
        return result
