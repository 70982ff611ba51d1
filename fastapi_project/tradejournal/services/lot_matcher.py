"""
FIFO lot matching.

Turns an ordered stream of events for one symbol into realized P&L per
closing event plus the queues of lots still open. Pure functions only:
callers fetch trades and persist results.

Sides:
    BUY    opens a long lot
    SELL   closes long lots
    SHORT  opens a short option lot (SELL_TO_OPEN)
    COVER  closes short lots (BUY_TO_CLOSE)
    CLOSE  expiry, assignment or exercise: closes long lots if any are open,
           otherwise short lots

Ordering: calendar day ascending, opening sides before closing sides on the
same day, otherwise input order. Time of day is ignored.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from ..models import DEFAULT_CONTRACT_MULTIPLIER

logger = logging.getLogger(__name__)

BUY = "BUY"
SELL = "SELL"
SHORT = "SHORT"
COVER = "COVER"
CLOSE = "CLOSE"

OPENING_SIDES = frozenset({BUY, SHORT})

SIDE_BY_TRADE_TYPE = {
    "BUY": BUY,
    "BUY_TO_OPEN": BUY,
    "SELL": SELL,
    "SELL_TO_CLOSE": SELL,
    "SELL_TO_OPEN": SHORT,
    "BUY_TO_CLOSE": COVER,
    "ASSIGNED": CLOSE,
    "EXERCISED": CLOSE,
    "EXPIRED": CLOSE,
}


def _day(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


@dataclass
class Lot:
    """An open lot. `fee_remaining` is the part of the opening fee not yet charged."""

    quantity: float
    price: float
    fee_remaining: float = 0.0
    date: Optional[date] = None
    multiplier: float = 1.0

    def consume(self, qty: float) -> Tuple[float, Optional["Lot"]]:
        """Take `qty` off the lot.

        Returns the cost of the consumed part (fee pro-rated by the fraction
        consumed) and the remainder lot, or None when the lot is used up.
        """
        qty = min(qty, self.quantity)
        fraction = qty / self.quantity if self.quantity else 1.0
        fee_portion = self.fee_remaining * fraction
        cost_portion = qty * self.price * self.multiplier + fee_portion
        left = self.quantity - qty
        if left <= 0:
            return cost_portion, None
        remainder = Lot(
            quantity=left,
            price=self.price,
            fee_remaining=self.fee_remaining - fee_portion,
            date=self.date,
            multiplier=self.multiplier,
        )
        return cost_portion, remainder

    def consume_credit(self, qty: float) -> Tuple[float, Optional["Lot"]]:
        """Short-lot counterpart of `consume`: premium received net of its fee share."""
        gross = min(qty, self.quantity) * self.price * self.multiplier
        cost_portion, remainder = self.consume(qty)
        return gross - (cost_portion - gross), remainder


@dataclass
class MatchEvent:
    side: str  # BUY / SELL / SHORT / COVER / CLOSE
    quantity: float
    price: float
    fee: float
    date: Any  # date or datetime
    multiplier: float = 1.0
    trade_id: Optional[int] = None


@dataclass
class RealizedPnL:
    date: date
    pnl: float
    trade_id: Optional[int] = None
    # Long closes: cost of the lots sold. Short closes: cost to buy back.
    cost_basis: float = 0.0


@dataclass
class MatchResult:
    realized: List[RealizedPnL] = field(default_factory=list)
    remaining_lots: Deque[Lot] = field(default_factory=deque)
    short_lots: Deque[Lot] = field(default_factory=deque)
    uncovered_quantity: float = 0.0

    @property
    def total_realized(self) -> float:
        return sum(r.pnl for r in self.realized)

    @property
    def open_quantity(self) -> float:
        return sum(lot.quantity for lot in self.remaining_lots)

    @property
    def open_short_quantity(self) -> float:
        return sum(lot.quantity for lot in self.short_lots)

    @property
    def open_cost(self) -> float:
        """Σ quantity*price of the open long lots (fees excluded)."""
        return sum(lot.quantity * lot.price for lot in self.remaining_lots)

    @property
    def multiplier(self) -> float:
        lots = self.remaining_lots or self.short_lots
        return lots[0].multiplier if lots else 1.0


def _side_rank(side: str) -> int:
    return 0 if side in OPENING_SIDES else 1


def order_events(events: Iterable[MatchEvent]) -> List[MatchEvent]:
    """Sort by day, opening sides before closing sides on the same day. `sorted` is stable."""
    return sorted(events, key=lambda e: (_day(e.date), _side_rank(e.side)))


def _open_lot(event: MatchEvent) -> Lot:
    return Lot(
        quantity=event.quantity,
        price=event.price,
        fee_remaining=event.fee or 0.0,
        date=_day(event.date),
        multiplier=event.multiplier,
    )


def _drain(lots: Deque[Lot], quantity: float, short: bool) -> Tuple[float, float]:
    """Consume up to `quantity` from the front of `lots`.

    Returns (amount, quantity left over). `amount` is the cost of long lots or
    the net premium of short lots.
    """
    amount = 0.0
    remaining = quantity
    while remaining > 0 and lots:
        front = lots.popleft()
        qty_to_use = min(remaining, front.quantity)
        if short:
            portion, remainder = front.consume_credit(qty_to_use)
        else:
            portion, remainder = front.consume(qty_to_use)
        amount += portion
        remaining -= qty_to_use
        if remainder is not None:
            lots.appendleft(remainder)
    return amount, remaining


def _warn_uncovered(result: MatchResult, event: MatchEvent, remaining: float) -> None:
    result.uncovered_quantity += remaining
    logger.warning(
        f"{event.side} of {event.quantity} (trade {event.trade_id}) on {_day(event.date)} "
        f"exceeds open lots by {remaining}; using zero cost basis"
    )


def match(events: Sequence[MatchEvent]) -> MatchResult:
    """Run FIFO matching over the events of a single symbol."""
    result = MatchResult()
    longs = result.remaining_lots
    shorts = result.short_lots

    for event in order_events(events):
        if event.quantity <= 0:
            continue

        if event.side == BUY:
            longs.append(_open_lot(event))
            continue
        if event.side == SHORT:
            shorts.append(_open_lot(event))
            continue

        fee = event.fee or 0.0
        gross = event.quantity * event.price * event.multiplier

        if event.side == COVER or (event.side == CLOSE and not longs and shorts):
            # Closing cost is the buy-back price plus fee; P&L is the premium kept
            credit, remaining = _drain(shorts, event.quantity, short=True)
            if remaining > 1e-9:
                _warn_uncovered(result, event, remaining)
            closing_cost = gross + fee
            pnl, cost_basis = credit - closing_cost, closing_cost
        else:
            cost_basis, remaining = _drain(longs, event.quantity, short=False)
            if remaining > 1e-9:
                _warn_uncovered(result, event, remaining)
            pnl = gross - fee - cost_basis

        result.realized.append(
            RealizedPnL(
                date=_day(event.date),
                pnl=pnl,
                trade_id=event.trade_id,
                cost_basis=cost_basis,
            )
        )

    return result


# --- Adapters for Trade rows ---

def trade_multiplier(trade: Any) -> float:
    if getattr(trade, "instrument_type", "Stock") == "Option":
        return float(getattr(trade, "contract_multiplier", None) or DEFAULT_CONTRACT_MULTIPLIER)
    return 1.0


def trade_side(trade: Any) -> str:
    return SIDE_BY_TRADE_TYPE.get(trade.type, SELL)


def event_from_trade(trade: Any) -> MatchEvent:
    return MatchEvent(
        side=trade_side(trade),
        quantity=abs(trade.quantity or 0.0),
        price=trade.price or 0.0,
        fee=trade.fee or 0.0,
        date=trade.date,
        multiplier=trade_multiplier(trade),
        trade_id=getattr(trade, "id", None),
    )


def trade_sort_key(trade: Any):
    """Sort key applying the matching order to Trade rows."""
    return (_day(trade.date), _side_rank(trade_side(trade)))


def match_trades(trades: Iterable[Any]) -> MatchResult:
    """Match Trade rows (ORM objects or anything with the same attributes) for one symbol."""
    return match([event_from_trade(t) for t in trades])


@dataclass
class TradePnL:
    trade_id: Optional[int]
    symbol: str
    date: date
    pnl: float
    account_id: Optional[int] = None


def realized_pnl_series(trades: Iterable[Any]) -> List[TradePnL]:
    """Match per (account, symbol) and return every closing event's P&L in date order."""
    by_symbol: Dict[Tuple[Any, str], List[Any]] = defaultdict(list)
    for trade in trades:
        by_symbol[(getattr(trade, "account_id", None), trade.symbol)].append(trade)

    series: List[TradePnL] = []
    for (account_id, symbol), group in by_symbol.items():
        result = match_trades(sorted(group, key=trade_sort_key))
        series.extend(TradePnL(r.trade_id, symbol, r.date, r.pnl, account_id) for r in result.realized)
    series.sort(key=lambda t: t.date)
    return series
