"""
Quote provider backed by yfinance.

Used only by the portfolio-with-quotes view; the accounting core never asks
for prices. Results are cached process-locally for QUOTE_CACHE_SECONDS.
"""

import logging
import os
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, UTC
from typing import Dict, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

import yfinance as yf
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

QUOTE_TTL = timedelta(seconds=int(os.getenv("QUOTE_CACHE_SECONDS", "60")))
_EASTERN = ZoneInfo("America/New_York")

# --- Simple in-memory cache (process-local) ---
_cache_quotes: Dict[str, Tuple["StockQuote", datetime]] = {}


@dataclass
class StockQuote:
    symbol: str
    price: float
    change: float
    change_percent: float
    previous_close: Optional[float]
    day_high: Optional[float]
    day_low: Optional[float]
    volume: Optional[int]
    market_state: str

    def to_dict(self) -> dict:
        return asdict(self)


def market_state(now: Optional[datetime] = None) -> str:
    """US equity session for a moment in time: PRE, REGULAR, POST or CLOSED."""
    local = (now or datetime.now(UTC)).astimezone(_EASTERN)
    if local.weekday() >= 5:
        return "CLOSED"
    minutes = local.hour * 60 + local.minute
    if 4 * 60 <= minutes < 9 * 60 + 30:
        return "PRE"
    if 9 * 60 + 30 <= minutes < 16 * 60:
        return "REGULAR"
    if 16 * 60 <= minutes < 20 * 60:
        return "POST"
    return "CLOSED"


def _optional_float(value) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def clear_cache() -> None:
    _cache_quotes.clear()


def get_quote(symbol: str) -> Optional[StockQuote]:
    """
    Fetch a quote for one symbol via yfinance `fast_info`.
    Returns None when the symbol cannot be priced. Caches for QUOTE_TTL.
    """
    symbol = symbol.upper()
    now = datetime.now(UTC)
    hit = _cache_quotes.get(symbol)
    if hit and now - hit[1] < QUOTE_TTL:
        return hit[0]
    try:
        info = yf.Ticker(symbol).fast_info
        price = _optional_float(info.get("last_price"))
        if price is None:
            return None
        previous_close = _optional_float(info.get("previous_close"))
        change = price - previous_close if previous_close else 0.0
        change_percent = (change / previous_close * 100) if previous_close else 0.0
        volume = info.get("last_volume")
        quote = StockQuote(
            symbol=symbol,
            price=price,
            change=round(change, 4),
            change_percent=round(change_percent, 4),
            previous_close=previous_close,
            day_high=_optional_float(info.get("day_high")),
            day_low=_optional_float(info.get("day_low")),
            volume=int(volume) if volume is not None else None,
            market_state=market_state(now),
        )
    except Exception as e:  # yfinance raises a wide range of network/parse errors
        logger.warning(f"Quote fetch failed for {symbol}: {e}")
        return None
    _cache_quotes[symbol] = (quote, now)
    return quote


def get_quotes(symbols: Iterable[str]) -> Dict[str, StockQuote]:
    """Quotes keyed by upper-cased symbol; symbols that fail are omitted."""
    quotes: Dict[str, StockQuote] = {}
    for symbol in {s.upper() for s in symbols if s}:
        quote = get_quote(symbol)
        if quote is not None:
            quotes[symbol] = quote
    return quotes
