"""
Shared pieces for CSV importers.

- ImportResult: the structured outcome every importer returns
- tolerant field parsers (money, quantity, dates)
- duplicate lookups against already persisted trades/dividends

Importers stage rows on the session and leave committing to ImporterService.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from datetime import datetime, date
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models

QUANTITY_TOLERANCE = 0.001
PRICE_TOLERANCE = 0.001
DIVIDEND_AMOUNT_TOLERANCE = 0.01


class RowError(ValueError):
    """A single row could not be parsed; the file import continues."""


@dataclass
class ImportResult:
    success: bool = True
    format: Optional[str] = None
    imported_count: int = 0
    dividends_imported_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    imported_trades: List[Dict[str, Any]] = field(default_factory=list)
    spreads_detected: int = 0

    @classmethod
    def failure(cls, message: str, format: Optional[str] = None) -> "ImportResult":
        return cls(success=False, format=format, errors=[message])

    def add_error(self, row_number: int, message: str) -> None:
        self.error_count += 1
        self.errors.append(f"Row {row_number}: {message}")

    def add_skip(self, row_number: int, message: Optional[str] = None) -> None:
        self.skipped_count += 1
        if message:
            self.errors.append(f"Row {row_number}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "format": self.format,
            "imported_count": self.imported_count,
            "dividends_imported_count": self.dividends_imported_count,
            "skipped_count": self.skipped_count,
            "error_count": self.error_count,
            "errors": list(self.errors),
            "imported_trades": list(self.imported_trades),
            "spreads_detected": self.spreads_detected,
        }


def _clean_str(s: Any) -> str:
    if s is None:
        return ""
    if isinstance(s, (int, float)):
        return str(s)
    return str(s).strip()


def _parse_money(s: Any) -> Optional[float]:
    """Parse "$1,234.50", "(12.00)", "-3" and friends. Empty → None."""
    txt = _clean_str(s)
    if not txt:
        return None
    # remove currency symbols, commas, spaces
    txt = (
        txt.replace("$", "")
        .replace(",", "")
        .replace("USD", "")
        .replace(" ", "")
    )
    if not txt or txt in ("--", "-"):
        return None
    # handle parentheses for negatives
    neg = False
    if txt.startswith("(") and txt.endswith(")"):
        neg = True
        txt = txt[1:-1]
    try:
        val = float(txt)
    except ValueError:
        raise RowError(f"Invalid number '{_clean_str(s)}'")
    return -val if neg else val


def _parse_date(s: Any) -> Optional[datetime]:
    """Parse a broker date. Empty → None; anything unrecognised raises RowError."""
    txt = _clean_str(s)
    if not txt:
        return None
    # Fidelity sometimes appends " as of 01/02/2025"
    txt = txt.split(" as of ")[0].strip()
    fmts = [
        "%m/%d/%Y",
        "%Y-%m-%d",
        "%m/%d/%y",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
        "%m/%d/%Y %H:%M",
        "%m/%d/%Y %H:%M:%S",
    ]
    for fmt in fmts:
        try:
            return datetime.strptime(txt, fmt)
        except ValueError:
            continue
    raise RowError(f"Invalid date '{txt}'")


def read_csv_rows(text: str) -> List[List[str]]:
    """Split CSV text into trimmed rows; blank lines are dropped."""
    rows = []
    for row in csv.reader(text.splitlines()):
        cells = [c.strip() for c in row]
        if any(cells):
            rows.append(cells)
    return rows


def cell(row: List[str], index: int) -> str:
    if index < 0 or index >= len(row):
        return ""
    return row[index].strip()


def _day_bounds(value: datetime):
    start = datetime.combine(value.date() if isinstance(value, datetime) else value, datetime.min.time())
    end = datetime.combine(start.date(), datetime.max.time())
    return start, end


def is_duplicate_trade(
    db: Session,
    user_id: str,
    account_id: int,
    symbol: str,
    when: datetime,
    trade_type: str,
    quantity: float,
    price: float,
) -> bool:
    """Same user/account/symbol/day/type with quantity and price within tolerance."""
    start, end = _day_bounds(when)
    q = db.query(models.Trade.id).filter(
        models.Trade.user_id == user_id,
        models.Trade.account_id == account_id,
        models.Trade.symbol == symbol,
        models.Trade.type == trade_type,
        models.Trade.date >= start,
        models.Trade.date <= end,
        func.abs(models.Trade.quantity - quantity) < QUANTITY_TOLERANCE,
        func.abs(models.Trade.price - price) < PRICE_TOLERANCE,
    )
    return db.query(q.exists()).scalar()


def is_duplicate_dividend(
    db: Session,
    user_id: str,
    account_id: int,
    symbol: str,
    when: datetime,
    amount: float,
) -> bool:
    start, end = _day_bounds(when)
    q = db.query(models.Dividend.id).filter(
        models.Dividend.user_id == user_id,
        models.Dividend.account_id == account_id,
        models.Dividend.symbol == symbol,
        models.Dividend.payment_date >= start,
        models.Dividend.payment_date <= end,
        func.abs(models.Dividend.amount - amount) < DIVIDEND_AMOUNT_TOLERANCE,
    )
    return db.query(q.exists()).scalar()


def as_datetime(value: date) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, datetime.min.time())
