"""
TradeService: the trade store plus per-symbol and per-period trade analytics.

Every mutation is followed by a position recalculation for the symbols it
touched, so cached Portfolio rows never drift from the trade log.
"""
import calendar
import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from .. import models, schemas
from ..utils.error_handling import ResourceNotFoundError, ValidationError
from ..utils.option_parser import parse_option_symbol
from .accounts_service import AccountsService
from .lot_matcher import match_trades, realized_pnl_series, trade_multiplier, trade_sort_key
from .portfolio_service import PortfolioService

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]

OPENING_TYPES = frozenset({"BUY", "BUY_TO_OPEN", "SELL_TO_OPEN"})


def _day(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def iso_week_label(d: date) -> str:
    year, week, _ = d.isocalendar()
    return f"{year}-W{week:02d}"


def _filter_range(query, column, start: Optional[DateLike], end: Optional[DateLike]):
    """Inclusive day range on a DateTime column; time of day is ignored."""
    if start is not None:
        query = query.filter(column >= datetime.combine(_day(start), time.min))
    if end is not None:
        query = query.filter(column < datetime.combine(_day(end) + timedelta(days=1), time.min))
    return query


def _apply_option_defaults(trade: models.Trade) -> None:
    """Fill option fields from the symbol where missing, then require them."""
    parsed = parse_option_symbol(trade.symbol)
    if parsed is not None:
        trade.option_type = trade.option_type or parsed.option_type
        if trade.strike_price is None:
            trade.strike_price = parsed.strike
        if trade.expiration_date is None:
            trade.expiration_date = datetime.combine(parsed.expiration, time.min)
        trade.underlying_symbol = trade.underlying_symbol or parsed.underlying

    for field_name in ("option_type", "strike_price", "expiration_date"):
        if getattr(trade, field_name) is None:
            raise ValidationError(f"Option trades require {field_name}", field=field_name)

    trade.underlying_symbol = trade.underlying_symbol or trade.symbol
    trade.contract_multiplier = trade.contract_multiplier or models.DEFAULT_CONTRACT_MULTIPLIER
    if trade.is_opening_trade is None:
        trade.is_opening_trade = trade.type in OPENING_TYPES
    trade.spread_type = trade.spread_type or "Single"


class TradeService:

    @staticmethod
    def list_trades(
        db: Session,
        user_id: str,
        account_id: Optional[int] = None,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
        symbol: Optional[str] = None,
    ) -> List[models.Trade]:
        q = db.query(models.Trade).filter(models.Trade.user_id == user_id)
        if account_id is not None:
            q = q.filter(models.Trade.account_id == account_id)
        if symbol:
            q = q.filter(models.Trade.symbol == symbol.upper())
        q = _filter_range(q, models.Trade.date, start, end)
        return q.order_by(models.Trade.date, models.Trade.id).all()

    @staticmethod
    def get_trade(db: Session, user_id: str, trade_id: int) -> models.Trade:
        trade = (
            db.query(models.Trade)
            .filter(models.Trade.id == trade_id, models.Trade.user_id == user_id)
            .first()
        )
        if trade is None:
            raise ResourceNotFoundError("Trade", trade_id)
        return trade

    @staticmethod
    def create_trade(db: Session, user_id: str, payload: schemas.TradeCreate) -> models.Trade:
        AccountsService.get_account(db, user_id, payload.account_id)
        if payload.quantity <= 0:
            raise ValidationError("Quantity must be positive", field="quantity", value=payload.quantity)

        trade = models.Trade(**payload.model_dump(), user_id=user_id)
        if trade.instrument_type == "Option":
            _apply_option_defaults(trade)

        db.add(trade)
        db.commit()
        db.refresh(trade)
        PortfolioService.recalculate_symbol(db, user_id, trade.account_id, trade.symbol)
        logger.info(f"Created trade {trade.id}: {trade.type} {trade.quantity:g} {trade.symbol} @ {trade.price}")
        return trade

    @staticmethod
    def update_trade(db: Session, user_id: str, trade_id: int, payload: schemas.TradeUpdate) -> models.Trade:
        trade = TradeService.get_trade(db, user_id, trade_id)
        old_symbol = trade.symbol

        for key, value in payload.model_dump(exclude_unset=True).items():
            setattr(trade, key, value)
        if trade.instrument_type == "Option":
            _apply_option_defaults(trade)
        db.commit()
        db.refresh(trade)

        symbols = {old_symbol, trade.symbol}
        PortfolioService.recalculate_symbols(db, user_id, trade.account_id, symbols)
        return trade

    @staticmethod
    def delete_trade(db: Session, user_id: str, trade_id: int) -> None:
        trade = TradeService.get_trade(db, user_id, trade_id)
        account_id, symbol = trade.account_id, trade.symbol
        db.delete(trade)
        db.commit()
        PortfolioService.recalculate_symbol(db, user_id, account_id, symbol)

    # --- Analytics ---

    @staticmethod
    def get_symbol_summary(
        db: Session, user_id: str, symbol: str, account_id: Optional[int] = None
    ) -> schemas.SymbolTradeSummary:
        symbol = symbol.strip().upper()
        trades = TradeService.list_trades(db, user_id, account_id, symbol=symbol)
        summary = schemas.SymbolTradeSummary(symbol=symbol)
        if not trades:
            return summary

        buys = [t for t in trades if t.type in models.BUY_SIDE_TYPES]
        sells = [t for t in trades if t.type not in models.BUY_SIDE_TYPES]
        bought = sum(t.quantity for t in buys)
        sold = sum(t.quantity for t in sells)

        # Lots are matched per account; positions in different accounts never offset
        by_account: Dict[int, List[models.Trade]] = defaultdict(list)
        for t in trades:
            by_account[t.account_id].append(t)
        current_quantity = cost_basis = realized = cost_of_sold = 0.0
        for group in by_account.values():
            result = match_trades(sorted(group, key=trade_sort_key))
            current_quantity += result.open_quantity
            cost_basis += result.open_cost
            realized += result.total_realized
            cost_of_sold += sum(r.cost_basis for r in result.realized)

        days = [_day(t.date) for t in trades]
        summary.total_trades = len(trades)
        summary.buy_trades = len(buys)
        summary.sell_trades = len(sells)
        summary.total_bought = bought
        summary.total_sold = sold
        summary.average_buy_price = round(sum(t.quantity * t.price for t in buys) / bought, 4) if bought else 0.0
        summary.average_sell_price = round(sum(t.quantity * t.price for t in sells) / sold, 4) if sold else 0.0
        summary.current_quantity = current_quantity
        summary.cost_basis = round(cost_basis, 2)
        summary.realized_pnl = round(realized, 2)
        summary.realized_pnl_percent = round(realized / cost_of_sold * 100, 2) if cost_of_sold > 0 else 0.0
        summary.total_fees = round(sum(t.fee or 0.0 for t in trades), 2)
        summary.first_trade_date = min(days)
        summary.last_trade_date = max(days)
        return summary

    @staticmethod
    def get_time_analysis(
        db: Session,
        user_id: str,
        account_id: Optional[int] = None,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
    ) -> schemas.TimeAnalysis:
        """Monthly and weekly activity, newest period first.

        History before `start` is matched too so sells in range keep their
        cost basis; only trades inside the range are reported.
        """
        history = TradeService.list_trades(db, user_id, account_id, end=end)
        pnl_by_trade = {t.trade_id: t.pnl for t in realized_pnl_series(history)}
        trades = [t for t in history if start is None or _day(t.date) >= _day(start)]
        if not trades:
            return schemas.TimeAnalysis()

        monthly: Dict[tuple, List[models.Trade]] = defaultdict(list)
        weekly: Dict[tuple, List[models.Trade]] = defaultdict(list)
        for t in trades:
            d = _day(t.date)
            monthly[(d.year, d.month)].append(t)
            iso_year, iso_week, _ = d.isocalendar()
            weekly[(iso_year, iso_week)].append(t)

        months = []
        for (year, month), group in monthly.items():
            last_day = calendar.monthrange(year, month)[1]
            months.append(_period_summary(
                f"{year}-{month:02d}", date(year, month, 1), date(year, month, last_day), group, pnl_by_trade
            ))
        weeks = []
        for (year, week), group in weekly.items():
            monday = date.fromisocalendar(year, week, 1)
            weeks.append(_period_summary(
                iso_week_label(monday), monday, monday + timedelta(days=6), group, pnl_by_trade
            ))

        return schemas.TimeAnalysis(
            monthly=sorted(months, key=lambda p: p.period, reverse=True),
            weekly=sorted(weeks, key=lambda p: p.period, reverse=True),
        )

    # --- Bulk maintenance ---

    @staticmethod
    def find_and_remove_duplicates(
        db: Session, user_id: str, account_id: Optional[int] = None
    ) -> schemas.DuplicateCleanupResult:
        """Delete repeated trades, keeping the oldest row of each group."""
        trades = TradeService.list_trades(db, user_id, account_id)
        groups: Dict[tuple, List[models.Trade]] = defaultdict(list)
        for t in trades:
            key = (t.account_id, t.symbol, _day(t.date), t.type, round(t.quantity, 3), round(t.price, 3))
            groups[key].append(t)

        result = schemas.DuplicateCleanupResult()
        affected: Dict[int, set] = defaultdict(set)
        for (acct, symbol, day, trade_type, qty, price), group in groups.items():
            if len(group) < 2:
                continue
            group.sort(key=lambda t: (t.created_at or datetime.min, t.id))
            extra = group[1:]
            for t in extra:
                db.delete(t)
            affected[acct].add(symbol)
            result.duplicates_found += len(extra)
            result.duplicates_removed += len(extra)
            result.details.append(
                f"{symbol} {trade_type} {qty:g} @ ${price:.2f} on {day.isoformat()}: removed {len(extra)} of {len(group)}"
            )

        if result.duplicates_removed:
            db.commit()
            for acct, symbols in affected.items():
                PortfolioService.recalculate_symbols(db, user_id, acct, symbols)
            logger.info(f"Removed {result.duplicates_removed} duplicate trades for user {user_id}")

        result.affected_symbols = sorted({s for symbols in affected.values() for s in symbols})
        return result

    @staticmethod
    def delete_all_trades_for_account(db: Session, user_id: str, account_id: int) -> schemas.DeleteAllTradesResult:
        AccountsService.get_account(db, user_id, account_id)
        trades_deleted = (
            db.query(models.Trade)
            .filter(models.Trade.user_id == user_id, models.Trade.account_id == account_id)
            .delete(synchronize_session=False)
        )
        positions_deleted = (
            db.query(models.Portfolio)
            .filter(models.Portfolio.user_id == user_id, models.Portfolio.account_id == account_id)
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info(f"Deleted {trades_deleted} trades and {positions_deleted} positions from account {account_id}")
        return schemas.DeleteAllTradesResult(trades_deleted=trades_deleted, positions_deleted=positions_deleted)


def _period_summary(
    period: str, start: date, end: date, trades: List[Any], pnl_by_trade: Dict[Optional[int], float]
) -> schemas.TimePeriodSummary:
    pnls = [pnl_by_trade[t.id] for t in trades if t.id in pnl_by_trade]
    by_symbol: Dict[str, List[float]] = defaultdict(list)
    for t in trades:
        if t.id in pnl_by_trade:
            by_symbol[t.symbol].append(pnl_by_trade[t.id])

    return schemas.TimePeriodSummary(
        period=period,
        start_date=start,
        end_date=end,
        total_trades=len(trades),
        buy_trades=sum(1 for t in trades if t.type in models.BUY_SIDE_TYPES),
        sell_trades=sum(1 for t in trades if t.type not in models.BUY_SIDE_TYPES),
        total_volume=round(sum(t.quantity * t.price * trade_multiplier(t) for t in trades), 2),
        realized_pnl=round(sum(pnls), 2),
        total_fees=round(sum(t.fee or 0.0 for t in trades), 2),
        win_rate=round(sum(1 for p in pnls if p > 0) / len(pnls) * 100, 2) if pnls else 0.0,
        symbols=[
            schemas.SymbolBreakdown(symbol=s, pnl=round(sum(v), 2), trade_count=len(v))
            for s, v in sorted(by_symbol.items(), key=lambda kv: abs(sum(kv[1])), reverse=True)
        ],
    )
