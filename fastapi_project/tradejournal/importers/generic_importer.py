"""
Generic CSV importer

Expected header (case-insensitive, any order):
    Symbol, Type, Quantity, Price, Fee, Date, Notes
Optional option columns:
    Option Type, Strike, Expiration, Underlying, Multiplier

Only Symbol, Quantity and Price are required. A missing or unknown Type is
inferred from the sign of Quantity. A missing Date means today.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List

from sqlalchemy.orm import Session

from .. import models
from ..utils.option_parser import normalize_symbol, parse_option_symbol
from .base import (
    ImportResult,
    RowError,
    _parse_date,
    _parse_money,
    as_datetime,
    cell,
    is_duplicate_trade,
    read_csv_rows,
)

logger = logging.getLogger(__name__)

FORMAT_NAME = "Generic"
FORMAT_DESCRIPTION = "Generic CSV (Symbol, Type, Quantity, Price, Fee, Date)"

COLUMN_ALIASES = {
    "symbol": ("symbol",),
    "type": ("type", "action"),
    "quantity": ("quantity", "qty"),
    "price": ("price",),
    "fee": ("fee", "fees", "commission"),
    "date": ("date", "trade date"),
    "notes": ("notes", "note"),
    "option_type": ("option type", "option_type", "call/put"),
    "strike": ("strike", "strike price", "strike_price"),
    "expiration": ("expiration", "expiration date", "expiry", "expiration_date"),
    "underlying": ("underlying", "underlying symbol", "underlying_symbol"),
    "multiplier": ("multiplier", "contract multiplier"),
}


def can_parse(headers: List[str]) -> bool:
    lowered = {h.strip().lower() for h in headers}
    return {"symbol", "quantity", "price"} <= lowered


def map_columns(headers: List[str]) -> Dict[str, int]:
    lowered = [h.strip().lower() for h in headers]
    columns = {}
    for key, aliases in COLUMN_ALIASES.items():
        columns[key] = next((lowered.index(a) for a in aliases if a in lowered), -1)
    return columns


def _normalize_type(raw: str, signed_quantity: float) -> str:
    t = raw.strip().upper().replace(" ", "_")
    if t in models.TRADE_TYPES:
        return t
    return "BUY" if signed_quantity >= 0 else "SELL"


def import_generic_csv(db: Session, text: str, user_id: str, account_id: int) -> ImportResult:
    result = ImportResult(format=FORMAT_NAME)
    rows = read_csv_rows(text)
    if len(rows) < 2:
        return ImportResult.failure("CSV file must have a header row and at least one data row.", format=FORMAT_NAME)

    cols = map_columns(rows[0])
    if cols["symbol"] < 0 or cols["quantity"] < 0 or cols["price"] < 0:
        return ImportResult.failure("CSV must have 'Symbol', 'Quantity', and 'Price' columns.", format=FORMAT_NAME)

    for row_number, row in enumerate(rows[1:], start=2):
        try:
            symbol = normalize_symbol(cell(row, cols["symbol"]))
            if not symbol:
                raise RowError("Missing symbol")
            signed_quantity = _parse_money(cell(row, cols["quantity"]))
            if signed_quantity is None or signed_quantity == 0:
                raise RowError("Invalid quantity")
            price = _parse_money(cell(row, cols["price"]))
            if price is None:
                raise RowError("Invalid price")
            fee = _parse_money(cell(row, cols["fee"])) or 0.0
            traded = _parse_date(cell(row, cols["date"])) or datetime.now().replace(microsecond=0)
            notes = cell(row, cols["notes"]) or None
            trade_type = _normalize_type(cell(row, cols["type"]), signed_quantity)
            quantity = abs(signed_quantity)

            if is_duplicate_trade(db, user_id, account_id, symbol, traded, trade_type, quantity, price):
                result.add_skip(
                    row_number,
                    f"Duplicate trade skipped ({symbol} {trade_type} {quantity:g} @ ${price:.2f} on {traded:%Y-%m-%d})",
                )
                continue

            trade = models.Trade(
                symbol=symbol,
                instrument_type="Stock",
                type=trade_type,
                quantity=quantity,
                price=price,
                fee=abs(fee),
                date=traded,
                notes=notes,
                account_id=account_id,
                user_id=user_id,
            )

            option = parse_option_symbol(symbol)
            explicit_type = cell(row, cols["option_type"])
            if option is not None or explicit_type:
                trade.instrument_type = "Option"
                trade.option_type = (
                    ("Put" if explicit_type.lower().startswith("p") else "Call") if explicit_type else option.option_type
                )
                strike = _parse_money(cell(row, cols["strike"]))
                trade.strike_price = strike if strike is not None else (option.strike if option else None)
                expiration = _parse_date(cell(row, cols["expiration"]))
                if expiration is None and option is not None:
                    expiration = as_datetime(option.expiration)
                if trade.strike_price is None or expiration is None:
                    raise RowError("Option rows require strike and expiration")
                trade.expiration_date = expiration
                trade.underlying_symbol = (
                    cell(row, cols["underlying"]).upper() or (option.underlying if option else symbol)
                )
                multiplier = _parse_money(cell(row, cols["multiplier"]))
                trade.contract_multiplier = int(multiplier) if multiplier else models.DEFAULT_CONTRACT_MULTIPLIER
                trade.is_opening_trade = trade_type not in ("BUY_TO_CLOSE", "SELL_TO_CLOSE", "ASSIGNED", "EXERCISED", "EXPIRED")
                trade.spread_type = "Single"

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
        except RowError as e:
            result.add_error(row_number, str(e))
        except Exception as e:  # one bad row never aborts the file
            logger.exception(f"Unexpected error importing generic row {row_number}")
            result.add_error(row_number, str(e))

    logger.info(
        f"Generic import for account {account_id}: {result.imported_count} trades, "
        f"{result.skipped_count} skipped, {result.error_count} errors"
    )
    return result
