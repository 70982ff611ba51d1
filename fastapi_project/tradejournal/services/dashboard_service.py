"""
Dashboard metrics: headline numbers plus daily chart series.

The series are continuous from the first to the last active day (a day with a
realized sell or a dividend payment); quiet days appear with a zero value.
"""
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.orm import Session

from .. import schemas
from .dividend_service import DividendService
from .lot_matcher import realized_pnl_series
from .portfolio_service import PortfolioService
from .trade_service import TradeService

logger = logging.getLogger(__name__)


def _day(value: Any) -> date:
    return value.date() if isinstance(value, datetime) else value


def _multiplier(position: Any) -> float:
    return getattr(position, "multiplier", None) or 1.0


def build_dashboard_metrics(
    trades: Sequence[Any],
    dividends: Sequence[Any],
    positions: Sequence[Any],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> schemas.DashboardMetrics:
    """Pure metric computation over fetched rows.

    `trades` may include history before `start`; it feeds lot matching but
    only sells inside [start, end] are reported.
    """
    def in_range(d: date) -> bool:
        return (start is None or d >= start) and (end is None or d <= end)

    series = [t for t in realized_pnl_series(trades) if in_range(t.date)]
    reported_trades = [t for t in trades if in_range(_day(t.date))]
    dividends = [d for d in dividends if in_range(_day(d.payment_date))]

    daily_pnl: Dict[date, float] = defaultdict(float)
    for t in series:
        daily_pnl[t.date] += t.pnl
    daily_divs: Dict[date, float] = defaultdict(float)
    for d in dividends:
        daily_divs[_day(d.payment_date)] += d.amount

    wins = sum(1 for t in series if t.pnl > 0)
    losses = sum(1 for t in series if t.pnl < 0)
    closed = wins + losses
    realized = sum(t.pnl for t in series)

    held = [p for p in positions if p.quantity > 0]
    cost = sum(p.quantity * p.average_price * _multiplier(p) for p in held)
    value = sum(
        p.quantity * (p.current_price if p.current_price is not None else p.average_price) * _multiplier(p)
        for p in held
    )

    metrics = schemas.DashboardMetrics(
        total_realized_pnl=round(realized, 2),
        total_trades=len(reported_trades),
        winning_trades=wins,
        losing_trades=losses,
        win_rate=round(wins / closed * 100, 2) if closed else 0.0,
        avg_pnl_per_day=round(realized / len(daily_pnl), 2) if daily_pnl else 0.0,
        total_dividends=round(sum(daily_divs.values()), 2),
        portfolio_cost=round(cost, 2),
        portfolio_value=round(value, 2),
        unrealized_pnl=round(value - cost, 2),
    )

    active_days = set(daily_pnl) | set(daily_divs)
    if not active_days:
        return metrics

    first, last = min(active_days), max(active_days)
    cumulative_pnl = cumulative_divs = 0.0
    day = first
    while day <= last:
        pnl = daily_pnl.get(day, 0.0)
        paid = daily_divs.get(day, 0.0)
        cumulative_pnl += pnl
        cumulative_divs += paid
        metrics.daily_pnl.append(schemas.DateValue(date=day, value=round(pnl, 2)))
        metrics.cumulative_pnl.append(schemas.DateValue(date=day, value=round(cumulative_pnl, 2)))
        metrics.equity_curve.append(
            schemas.DateValue(date=day, value=round(cost + cumulative_pnl + cumulative_divs, 2))
        )
        metrics.daily_dividends.append(schemas.DateValue(date=day, value=round(paid, 2)))
        metrics.cumulative_dividends.append(schemas.DateValue(date=day, value=round(cumulative_divs, 2)))
        day += timedelta(days=1)
    return metrics


class DashboardService:

    @staticmethod
    def get_metrics(
        db: Session,
        user_id: str,
        account_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> schemas.DashboardMetrics:
        trades = TradeService.list_trades(db, user_id, account_id, end=end_date)
        dividends = DividendService.list_dividends(db, user_id, account_id, start=start_date, end=end_date)
        positions = PortfolioService.get_portfolio(db, user_id, account_id)
        metrics = build_dashboard_metrics(trades, dividends, positions, start_date, end_date)
        logger.debug(f"Dashboard for user {user_id}: {len(metrics.daily_pnl)} days, {metrics.total_trades} trades")
        return metrics
