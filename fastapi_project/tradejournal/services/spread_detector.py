"""
Spread detection: groups option legs into named multi-leg strategies.

Each pass is a pure function over the legs nobody has claimed yet. Pass order:

    iron condor → vertical → straddle/strangle → butterfly
    → calendar → diagonal → custom

Greedy, no backtracking. Detection produces SpreadPatch records which are
written to the Trade rows in one batch once every pass has run. Trades that
already carry a spread_group_id are never looked at again.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from .. import models

logger = logging.getLogger(__name__)

STRATEGY_MARKER = "Strategy:"
_STRATEGY_NAME_RE = re.compile(r"Strategy:\s*([^|]+?)\s*(?:\||$)")


class SpreadType(str, Enum):
    SINGLE = "Single"
    CREDIT_SPREAD = "CreditSpread"
    DEBIT_SPREAD = "DebitSpread"
    IRON_CONDOR = "IronCondor"
    STRADDLE = "Straddle"
    STRANGLE = "Strangle"
    BUTTERFLY = "Butterfly"
    CALENDAR = "Calendar"
    DIAGONAL = "Diagonal"
    CUSTOM = "Custom"


@dataclass(frozen=True)
class OptionLeg:
    trade_id: int
    trade_date: date
    underlying: str
    expiration: Optional[date]
    option_type: str  # Call / Put
    strike: float
    is_buy: bool
    is_opening: bool
    quantity: float
    price: float
    multiplier: float = float(models.DEFAULT_CONTRACT_MULTIPLIER)
    notes: Optional[str] = None

    @property
    def premium(self) -> float:
        """Signed cash flow: sells bring premium in, buys pay it out."""
        amount = self.price * self.quantity * self.multiplier
        return -amount if self.is_buy else amount


@dataclass
class DetectedSpread:
    spread_type: SpreadType
    name: str
    legs: List[OptionLeg]
    group_id: Optional[str] = None

    @property
    def net_premium(self) -> float:
        return net_premium(self.legs)

    @property
    def is_credit(self) -> bool:
        return self.net_premium > 0

    def ordered_legs(self) -> List[OptionLeg]:
        return sorted(self.legs, key=lambda leg: (leg.strike, leg.option_type))


@dataclass
class SpreadPatch:
    trade_id: int
    spread_type: str
    spread_group_id: str
    spread_leg_number: int
    notes: Optional[str]


def net_premium(legs: Iterable[OptionLeg]) -> float:
    return sum(leg.premium for leg in legs)


def _group(legs: Iterable[OptionLeg], key: Callable[[OptionLeg], Hashable]) -> Dict[Hashable, List[OptionLeg]]:
    groups: Dict[Hashable, List[OptionLeg]] = defaultdict(list)
    for leg in legs:
        groups[key(leg)].append(leg)
    return groups


def _calls(legs: Sequence[OptionLeg]) -> List[OptionLeg]:
    return [leg for leg in legs if leg.option_type == "Call"]


def _puts(legs: Sequence[OptionLeg]) -> List[OptionLeg]:
    return [leg for leg in legs if leg.option_type == "Put"]


def _one_buy_one_sell(legs: Sequence[OptionLeg]) -> bool:
    buys = sum(1 for leg in legs if leg.is_buy)
    return len(legs) == 2 and buys == 1


def _by_expiration(leg: OptionLeg):
    return (leg.trade_date, leg.underlying, leg.expiration, leg.is_opening)


def _by_expiration_and_class(leg: OptionLeg):
    return (leg.trade_date, leg.underlying, leg.expiration, leg.option_type, leg.is_opening)


def _by_strike_and_class(leg: OptionLeg):
    return (leg.trade_date, leg.underlying, leg.strike, leg.option_type)


def _by_class(leg: OptionLeg):
    return (leg.trade_date, leg.underlying, leg.option_type)


# --- Passes ---

def find_iron_condors(legs: Sequence[OptionLeg]) -> List[DetectedSpread]:
    found = []
    for group in _group(legs, _by_expiration).values():
        if len(group) != 4:
            continue
        calls, puts = _calls(group), _puts(group)
        if len(calls) == 2 and len(puts) == 2 and _one_buy_one_sell(calls) and _one_buy_one_sell(puts):
            found.append(DetectedSpread(SpreadType.IRON_CONDOR, "Iron Condor", group))
    return found


def find_verticals(legs: Sequence[OptionLeg]) -> List[DetectedSpread]:
    found = []
    for group in _group(legs, _by_expiration_and_class).values():
        if not _one_buy_one_sell(group):
            continue
        first, second = group
        if first.strike == second.strike or abs(first.quantity - second.quantity) > 1e-9:
            continue
        net = net_premium(group)
        if net > 0:
            found.append(DetectedSpread(SpreadType.CREDIT_SPREAD, f"Credit {first.option_type} Spread", group))
        else:
            found.append(DetectedSpread(SpreadType.DEBIT_SPREAD, f"Debit {first.option_type} Spread", group))
    return found


def find_straddles_and_strangles(legs: Sequence[OptionLeg]) -> List[DetectedSpread]:
    found = []
    for group in _group(legs, _by_expiration).values():
        if len(group) != 2:
            continue
        calls, puts = _calls(group), _puts(group)
        if len(calls) != 1 or len(puts) != 1 or calls[0].is_buy != puts[0].is_buy:
            continue
        direction = "Long" if calls[0].is_buy else "Short"
        if calls[0].strike == puts[0].strike:
            found.append(DetectedSpread(SpreadType.STRADDLE, f"{direction} Straddle", group))
        else:
            found.append(DetectedSpread(SpreadType.STRANGLE, f"{direction} Strangle", group))
    return found


def find_butterflies(legs: Sequence[OptionLeg]) -> List[DetectedSpread]:
    found = []
    for group in _group(legs, _by_expiration_and_class).values():
        if len(group) == 3:
            found.append(DetectedSpread(SpreadType.BUTTERFLY, f"{group[0].option_type} Butterfly", group))
    return found


def find_calendars(legs: Sequence[OptionLeg]) -> List[DetectedSpread]:
    found = []
    for group in _group(legs, _by_strike_and_class).values():
        if _one_buy_one_sell(group) and len({leg.expiration for leg in group}) == 2:
            found.append(DetectedSpread(SpreadType.CALENDAR, f"{group[0].option_type} Calendar", group))
    return found


def find_diagonals(legs: Sequence[OptionLeg]) -> List[DetectedSpread]:
    found = []
    for group in _group(legs, _by_class).values():
        if (
            _one_buy_one_sell(group)
            and len({leg.expiration for leg in group}) == 2
            and group[0].strike != group[1].strike
        ):
            found.append(DetectedSpread(SpreadType.DIAGONAL, f"{group[0].option_type} Diagonal", group))
    return found


def custom_label(legs: Sequence[OptionLeg]) -> str:
    """Best-effort name for a leftover multi-leg group."""
    n = len(legs)
    calls, puts = _calls(legs), _puts(legs)
    if n == 2 and (len(calls) == 2 or len(puts) == 2) and _one_buy_one_sell(legs):
        small, large = sorted(leg.quantity for leg in legs)
        if small > 0 and abs(large - 2 * small) < 1e-9:
            return "Ratio Spread 1x2"
    if n == 4 and len({leg.strike for leg in legs}) == 3:
        return "Iron Butterfly"
    if n == 3 and len(calls) == 2 and len(puts) == 1:
        return "Jade Lizard"
    if n == 3 and len(calls) == 1 and len(puts) == 2:
        return "Twisted Sister"
    return f"Custom ({n}-leg)"


def find_custom(legs: Sequence[OptionLeg]) -> List[DetectedSpread]:
    found = []
    for group in _group(legs, _by_expiration).values():
        if len(group) >= 2:
            found.append(DetectedSpread(SpreadType.CUSTOM, custom_label(group), group))
    return found


PASSES = (
    find_iron_condors,
    find_verticals,
    find_straddles_and_strangles,
    find_butterflies,
    find_calendars,
    find_diagonals,
    find_custom,
)


def detect_spreads(legs: Sequence[OptionLeg]) -> List[DetectedSpread]:
    """Run every pass in order; each pass only sees legs not claimed earlier."""
    unclaimed = list(legs)
    detected: List[DetectedSpread] = []
    for find in PASSES:
        found = find(unclaimed)
        if not found:
            continue
        claimed = {leg.trade_id for spread in found for leg in spread.legs}
        unclaimed = [leg for leg in unclaimed if leg.trade_id not in claimed]
        detected.extend(found)
    return detected


def annotate_notes(notes: Optional[str], name: str, net: float) -> Optional[str]:
    """Append the strategy annotation once."""
    if notes and STRATEGY_MARKER in notes:
        return notes
    side = "Credit" if net > 0 else "Debit"
    text = f"{STRATEGY_MARKER} {name} | Net {side}: ${abs(net):.2f}"
    return f"{notes} | {text}" if notes else text


def build_patches(
    detected: Iterable[DetectedSpread],
    new_group_id: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> List[SpreadPatch]:
    patches = []
    for spread in detected:
        spread.group_id = new_group_id()
        net = spread.net_premium
        for number, leg in enumerate(spread.ordered_legs(), start=1):
            patches.append(SpreadPatch(
                trade_id=leg.trade_id,
                spread_type=spread.spread_type.value,
                spread_group_id=spread.group_id,
                spread_leg_number=number,
                notes=annotate_notes(leg.notes, spread.name, net),
            ))
    return patches


# --- Persistence seam ---

def _as_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def leg_from_trade(trade: models.Trade) -> OptionLeg:
    return OptionLeg(
        trade_id=trade.id,
        trade_date=_as_date(trade.date),
        underlying=(trade.underlying_symbol or trade.symbol).upper(),
        expiration=_as_date(trade.expiration_date),
        option_type=trade.option_type,
        strike=trade.strike_price or 0.0,
        is_buy=trade.type in models.BUY_SIDE_TYPES,
        # unknown opening flag is treated as opening
        is_opening=trade.is_opening_trade is not False,
        quantity=trade.quantity,
        price=trade.price,
        multiplier=float(trade.contract_multiplier or models.DEFAULT_CONTRACT_MULTIPLIER),
        notes=trade.notes,
    )


def apply_patches(db: Session, patches: Sequence[SpreadPatch]) -> int:
    if not patches:
        return 0
    trades = {
        t.id: t
        for t in db.query(models.Trade).filter(models.Trade.id.in_([p.trade_id for p in patches]))
    }
    for patch in patches:
        trade = trades[patch.trade_id]
        trade.spread_type = patch.spread_type
        trade.spread_group_id = patch.spread_group_id
        trade.spread_leg_number = patch.spread_leg_number
        trade.notes = patch.notes
    db.commit()
    return len(patches)


def detect_and_group(db: Session, user_id: str, account_id: int) -> List[DetectedSpread]:
    """Group the account's ungrouped option legs. Safe to run repeatedly."""
    trades = (
        db.query(models.Trade)
        .filter(
            models.Trade.user_id == user_id,
            models.Trade.account_id == account_id,
            models.Trade.instrument_type == "Option",
            models.Trade.spread_group_id.is_(None),
            models.Trade.type.notin_(models.OPTION_EVENT_TYPES),
        )
        .order_by(models.Trade.date, models.Trade.id)
        .all()
    )
    legs = [leg_from_trade(t) for t in trades if t.option_type in models.OPTION_TYPES]
    detected = detect_spreads(legs)
    patched = apply_patches(db, build_patches(detected))
    if detected:
        logger.info(f"Detected {len(detected)} spreads ({patched} legs) in account {account_id}")
    return detected


# --- Read side ---

def strategy_name_from_notes(notes: Optional[str]) -> Optional[str]:
    if not notes:
        return None
    m = _STRATEGY_NAME_RE.search(notes)
    return m.group(1) if m else None


def list_spread_groups(db: Session, user_id: str, account_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """Grouped view of every detected spread, newest first."""
    q = db.query(models.Trade).filter(
        models.Trade.user_id == user_id,
        models.Trade.spread_group_id.isnot(None),
    )
    if account_id is not None:
        q = q.filter(models.Trade.account_id == account_id)
    groups: Dict[str, List[models.Trade]] = defaultdict(list)
    for trade in q.order_by(models.Trade.date.desc(), models.Trade.spread_leg_number).all():
        groups[trade.spread_group_id].append(trade)

    views = []
    for group_id, trades in groups.items():
        legs = [leg_from_trade(t) for t in trades]
        first = trades[0]
        views.append({
            "spread_group_id": group_id,
            "spread_type": first.spread_type,
            "strategy_name": strategy_name_from_notes(first.notes) or first.spread_type,
            "underlying_symbol": first.underlying_symbol,
            "expiration_date": first.expiration_date,
            "trade_date": first.date,
            "net_premium": round(net_premium(legs), 2),
            "leg_count": len(trades),
            "is_open": any(t.is_opening_trade for t in trades),
            "legs": [
                {
                    "trade_id": t.id,
                    "action": t.type,
                    "option_type": t.option_type,
                    "strike_price": t.strike_price,
                    "expiration_date": t.expiration_date,
                    "quantity": t.quantity,
                    "price": t.price,
                    "premium": round(leg.premium, 2),
                    "leg_number": t.spread_leg_number,
                }
                for t, leg in zip(trades, legs)
            ],
        })
    return views
