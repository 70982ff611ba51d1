"""
Fidelity "Accounts History" CSV importer

Parses the activity export downloaded from Fidelity and stages:
- Trades for stock buys/sells and option opens/closes/assignments/expirations
- Dividends for dividend and reinvestment rows

The importer is designed to be tolerant of:
- a free-text preamble before the "Run Date" header row
- the legal disclaimer block appended after the data
- currency strings like $1,200.00 and negative quantities on sells

Usage (programmatic):
    result = import_fidelity_csv(db, text, user_id, account_id)

Rows are only staged on the session; the caller commits.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from .. import models
from ..utils.option_parser import format_occ_symbol, normalize_symbol, parse_option
from .base import (
    ImportResult,
    RowError,
    _parse_date,
    _parse_money,
    as_datetime,
    cell,
    is_duplicate_dividend,
    is_duplicate_trade,
    read_csv_rows,
)

logger = logging.getLogger(__name__)

FORMAT_NAME = "Fidelity"
FORMAT_DESCRIPTION = "Fidelity accounts history export (Run Date, Action, Symbol, ...)"

# Column name fragments, matched case-insensitively as substrings; first match wins
COLUMN_FRAGMENTS = {
    "date": "run date",
    "action": "action",
    "symbol": "symbol",
    "description": "description",
    "price": "price",
    "quantity": "quantity",
    "commission": "commission",
    "fees": "fees",
    "amount": "amount",
}

DISCLAIMER_PREFIXES = (
    "the data",
    "informational",
    "exported",
    "purposes",
    "brokerage",
    "financial",
    "fidelity",
    "date downloaded",
)

DIVIDEND_KEYWORDS = ("DIVIDEND", "REINVESTMENT")
TRADE_KEYWORDS = (
    "BOUGHT",
    "SOLD",
    "OPENING",
    "CLOSING",
    "TO OPEN",
    "TO CLOSE",
    "ASSIGNED",
    "EXERCISED",
    "EXPIRED",
)


def can_parse(headers: List[str]) -> bool:
    lowered = [h.strip().lower() for h in headers]
    return (
        any("run date" in h for h in lowered)
        and any("action" in h for h in lowered)
        and any("symbol" in h for h in lowered)
    )


def map_columns(headers: List[str]) -> Dict[str, int]:
    lowered = [h.strip().lower() for h in headers]
    columns = {}
    for key, fragment in COLUMN_FRAGMENTS.items():
        columns[key] = next((i for i, h in enumerate(lowered) if fragment in h), -1)
    return columns


def _is_disclaimer(row: List[str]) -> bool:
    first = row[0].strip().strip('"').lower() if row else ""
    return any(first.startswith(prefix) for prefix in DISCLAIMER_PREFIXES)


def classify_dividend(action: str) -> str:
    a = action.upper()
    if "REINVEST" in a:
        return "REINVESTED"
    if "NON-QUALIFIED" in a or "NONQUALIFIED" in a:
        return "NON_QUALIFIED"
    if "QUALIFIED" in a:
        return "QUALIFIED"
    return "CASH"


def option_trade_type(action: str, signed_quantity: float = 0.0) -> str:
    """Map Fidelity option action text to a trade type. Ambiguous text opens."""
    a = action.upper()
    for event in ("ASSIGNED", "EXERCISED", "EXPIRED"):
        if event in a:
            return event
    closing = "CLOSING" in a or "TO CLOSE" in a
    if "BOUGHT" in a or "BUY" in a:
        return "BUY_TO_CLOSE" if closing else "BUY_TO_OPEN"
    if "SOLD" in a or "SELL" in a:
        return "SELL_TO_CLOSE" if closing else "SELL_TO_OPEN"
    if signed_quantity < 0:
        return "SELL_TO_CLOSE" if closing else "SELL_TO_OPEN"
    return "BUY_TO_CLOSE" if closing else "BUY_TO_OPEN"


def stock_trade_type(action: str, signed_quantity: float = 0.0) -> str:
    a = action.upper()
    if "BOUGHT" in a:
        return "BUY"
    if "SOLD" in a:
        return "SELL"
    for event in ("ASSIGNED", "EXERCISED", "EXPIRED"):
        if event in a:
            return event
    return "SELL" if signed_quantity < 0 else "BUY"


def _import_dividend(db: Session, row: List[str], cols: Dict[str, int], row_number: int, user_id: str, account_id: int, result: ImportResult) -> None:
    action = cell(row, cols["action"])
    symbol = normalize_symbol(cell(row, cols["symbol"]))
    amount = _parse_money(cell(row, cols["amount"]))
    if not symbol or not amount:
        result.add_skip(row_number)
        return

    paid = _parse_date(cell(row, cols["date"]))
    if paid is None:
        raise RowError("Missing date")

    if is_duplicate_dividend(db, user_id, account_id, symbol, paid, amount):
        result.add_skip(row_number, f"Duplicate dividend skipped ({symbol} ${amount:.2f} on {paid:%Y-%m-%d})")
        return

    quantity = _parse_money(cell(row, cols["quantity"]))
    notes = f"Imported from Fidelity (Adjustment): {action}" if amount < 0 else f"Imported from Fidelity: {action}"
    db.add(models.Dividend(
        symbol=symbol,
        amount=amount,
        quantity=abs(quantity) if quantity else None,
        type=classify_dividend(action),
        payment_date=paid,
        notes=notes,
        account_id=account_id,
        user_id=user_id,
    ))
    result.dividends_imported_count += 1


def _import_trade(db: Session, row: List[str], cols: Dict[str, int], row_number: int, user_id: str, account_id: int, result: ImportResult) -> None:
    action = cell(row, cols["action"])
    raw_symbol = cell(row, cols["symbol"])
    description = cell(row, cols["description"])

    traded = _parse_date(cell(row, cols["date"]))
    if traded is None:
        raise RowError("Missing date")
    signed_quantity = _parse_money(cell(row, cols["quantity"]))
    if signed_quantity is None or signed_quantity == 0:
        raise RowError("Invalid quantity")
    price = _parse_money(cell(row, cols["price"])) or 0.0
    fee = (_parse_money(cell(row, cols["commission"])) or 0.0) + (_parse_money(cell(row, cols["fees"])) or 0.0)
    quantity = abs(signed_quantity)

    option = parse_option(raw_symbol, description, action)
    symbol = normalize_symbol(raw_symbol)
    if option is not None:
        trade_type = option_trade_type(action, signed_quantity)
        if not symbol:
            symbol = format_occ_symbol(option.underlying, option.expiration, option.option_type, option.strike)
    else:
        trade_type = stock_trade_type(action, signed_quantity)
    if not symbol:
        raise RowError("Missing symbol")

    if is_duplicate_trade(db, user_id, account_id, symbol, traded, trade_type, quantity, price):
        result.add_skip(
            row_number,
            f"Duplicate trade skipped ({symbol} {trade_type} {quantity:g} @ ${price:.2f} on {traded:%Y-%m-%d})",
        )
        return

    trade = models.Trade(
        symbol=symbol,
        type=trade_type,
        quantity=quantity,
        price=price,
        fee=abs(fee),
        date=traded,
        notes=f"Imported from Fidelity: {action}",
        account_id=account_id,
        user_id=user_id,
    )
    if option is not None:
        trade.instrument_type = "Option"
        trade.option_type = option.option_type
        trade.strike_price = option.strike
        trade.expiration_date = as_datetime(option.expiration)
        trade.underlying_symbol = option.underlying
        trade.contract_multiplier = models.DEFAULT_CONTRACT_MULTIPLIER
        trade.is_opening_trade = trade_type in ("BUY_TO_OPEN", "SELL_TO_OPEN")
        trade.spread_type = "Single"
    else:
        trade.instrument_type = "Stock"

    db.add(trade)
    result.imported_count += 1
    result.imported_trades.append({
        "symbol": symbol,
        "type": trade_type,
        "quantity": quantity,
        "price": price,
        "fee": abs(fee),
        "date": traded.date().isoformat(),
        "instrument_type": trade.instrument_type,
    })


def import_fidelity_csv(db: Session, text: str, user_id: str, account_id: int) -> ImportResult:
    result = ImportResult(format=FORMAT_NAME)
    rows = read_csv_rows(text)

    header_index = next(
        (i for i, row in enumerate(rows) if row and row[0].strip().lower().startswith("run date")),
        None,
    )
    if header_index is None:
        return ImportResult.failure("Could not find the 'Run Date' header row.", format=FORMAT_NAME)

    cols = map_columns(rows[header_index])
    if cols["action"] < 0 or cols["symbol"] < 0:
        return ImportResult.failure("Header row is missing the Action or Symbol column.", format=FORMAT_NAME)
    min_cells = max(cols["date"], cols["action"]) + 1

    for row_number, row in enumerate(rows[header_index + 1:], start=header_index + 2):
        if _is_disclaimer(row) or len(row) < min_cells:
            continue
        action = cell(row, cols["action"]).upper()
        try:
            if any(k in action for k in DIVIDEND_KEYWORDS):
                _import_dividend(db, row, cols, row_number, user_id, account_id, result)
            elif any(k in action for k in TRADE_KEYWORDS):
                _import_trade(db, row, cols, row_number, user_id, account_id, result)
            else:
                result.add_skip(row_number)
        except RowError as e:
            result.add_error(row_number, str(e))
        except Exception as e:  # one bad row never aborts the file
            logger.exception(f"Unexpected error importing Fidelity row {row_number}")
            result.add_error(row_number, str(e))

    logger.info(
        f"Fidelity import for account {account_id}: {result.imported_count} trades, "
        f"{result.dividends_imported_count} dividends, {result.skipped_count} skipped, {result.error_count} errors"
    )
    return result
