"""
Option Symbol Parser Utility

Parses broker option identifiers into readable components. Three encodings are
understood:

- OCC:            "HIMS  251017P00037000" or "HIMS251017P00037000"
                  ticker, YYMMDD, C/P, strike in thousandths (8 digits)
- Broker short:   "-HIMS251017P37" or "-SPY250321P552.5"
                  ticker, YYMMDD, C/P, strike at face value
- Description:    "PUT (HIMS) HIMS & HERS HEALTH INC OCT 17 25 $37 (100 SHS)"

Every parser returns a ParsedOption or None; they never raise.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

_OCC_RE = re.compile(r"^([A-Z][A-Z0-9.]{0,5})\s*(\d{6})([CP])(\d{8})$")
_SHORT_RE = re.compile(r"^([A-Z][A-Z.]{0,5})(\d{6})([CP])(\d+(?:\.\d+)?)$")
_DESCRIPTION_RE = re.compile(
    r"\b(CALL|PUT)\s*\(\s*([A-Z][A-Z0-9.]*)\s*\)"
    r".*?\b(JAN|FEB|MAR|APR|MAY|JUN|JUL|AUG|SEP|OCT|NOV|DEC)\s+(\d{1,2})\s+(\d{2}|\d{4})"
    r"\s+\$?\s*(\d[\d,]*(?:\.\d+)?)",
    re.IGNORECASE,
)
_MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}


@dataclass(frozen=True)
class ParsedOption:
    underlying: str
    expiration: date
    option_type: str  # "Call" / "Put"
    strike: float


def normalize_symbol(symbol: Optional[str]) -> str:
    # Fidelity prefixes option symbols with "-" and pads with spaces
    return (symbol or "").strip().lstrip("-").strip().upper()


def _yymmdd(code: str) -> Optional[date]:
    try:
        return date(2000 + int(code[0:2]), int(code[2:4]), int(code[4:6]))
    except ValueError:
        return None


def _option_type(code: str) -> str:
    return "Put" if code.upper().startswith("P") else "Call"


def parse_occ_symbol(symbol: Optional[str]) -> Optional[ParsedOption]:
    """
    Parse an OCC option symbol.

    Example: "HIMS  251017P00037000" → HIMS 2025-10-17 Put $37.00
    """
    m = _OCC_RE.match(normalize_symbol(symbol))
    if not m:
        return None
    ticker, ymd, cp, strike_code = m.groups()
    expiration = _yymmdd(ymd)
    if expiration is None:
        return None
    # Strike is encoded in thousandths of a dollar
    return ParsedOption(ticker, expiration, _option_type(cp), int(strike_code) / 1000.0)


def parse_short_symbol(symbol: Optional[str]) -> Optional[ParsedOption]:
    """Parse the broker short format, e.g. "-AAPL250117C152.5"."""
    m = _SHORT_RE.match(normalize_symbol(symbol))
    if not m:
        return None
    ticker, ymd, cp, strike_txt = m.groups()
    expiration = _yymmdd(ymd)
    if expiration is None:
        return None
    return ParsedOption(ticker, expiration, _option_type(cp), float(strike_txt))


def parse_option_symbol(symbol: Optional[str]) -> Optional[ParsedOption]:
    """Try the OCC encoding first, then the broker short format."""
    return parse_occ_symbol(symbol) or parse_short_symbol(symbol)


def parse_option_description(text: Optional[str]) -> Optional[ParsedOption]:
    """Extract `CALL|PUT (UNDERLYING) ... MON DD YY $STRIKE` from free text."""
    if not text:
        return None
    m = _DESCRIPTION_RE.search(text)
    if not m:
        return None
    cp, ticker, mon, day, year, strike_txt = m.groups()
    year_num = int(year)
    if year_num < 100:
        year_num += 2000
    try:
        expiration = date(year_num, _MONTHS[mon.upper()], int(day))
        strike = float(strike_txt.replace(",", ""))
    except ValueError:
        return None
    return ParsedOption(ticker.upper(), expiration, _option_type(cp), strike)


def parse_option(
    symbol: Optional[str],
    description: Optional[str] = None,
    action: Optional[str] = None,
) -> Optional[ParsedOption]:
    """
    Resolve option details for an import row.

    Order: OCC symbol, broker short symbol, description text, action text.
    The first successful parse wins.
    """
    return (
        parse_occ_symbol(symbol)
        or parse_short_symbol(symbol)
        or parse_option_description(description)
        or parse_option_description(action)
    )


def format_occ_symbol(underlying: str, expiration: date, option_type: str, strike: float) -> str:
    """Build the unpadded OCC symbol for a contract (used when the row carried no symbol)."""
    cp = "P" if option_type.lower().startswith("p") else "C"
    return f"{underlying.upper()}{expiration:%y%m%d}{cp}{int(round(strike * 1000)):08d}"
