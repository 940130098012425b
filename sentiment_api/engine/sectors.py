"""Symbol → sector lookup used for portfolio sector exposure."""

from __future__ import annotations

from typing import Protocol

OTHER = "OTHER"

_SECTORS: dict[str, tuple[str, ...]] = {
    "TECH": ("AAPL", "MSFT", "GOOGL", "GOOG", "AMZN", "META", "NVDA", "TSLA", "NFLX", "AMD", "INTC", "ORCL"),
    "FINANCE": ("JPM", "BAC", "WFC", "GS", "MS", "C", "SCHW", "BLK"),
    "HEALTHCARE": ("JNJ", "PFE", "UNH", "ABBV", "MRK", "TMO", "LLY"),
    "ENERGY": ("XOM", "CVX", "COP", "EOG", "SLB"),
    "CONSUMER": ("WMT", "PG", "KO", "PEP", "COST", "MCD"),
}


class SectorLookup(Protocol):
    def sector_for(self, symbol: str) -> str: ...


class StaticSectorLookup:
    """In-memory symbol table; unknown symbols map to OTHER."""

    def __init__(self, overrides: dict[str, str] | None = None) -> None:
        self._table = {sym: sector for sector, syms in _SECTORS.items() for sym in syms}
        for sym, sector in (overrides or {}).items():
            self._table[sym.upper()] = sector.upper()

    def sector_for(self, symbol: str) -> str:
        return self._table.get(symbol.upper(), OTHER)
