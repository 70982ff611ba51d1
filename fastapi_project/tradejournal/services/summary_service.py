"""
Trading statistics.

`summarize` is a pure function over already fetched trades and dividends.
Realized P&L comes from FIFO matching per (account, symbol); every metric is
derived from that chronological series. Empty input yields a zero-valued
TradingSummary; no ratio ever raises on division by zero.
"""

import calendar
import logging
import math
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from .. import models, schemas
from .dividend_service import DividendService
from .lot_matcher import TradePnL, realized_pnl_series
from .trade_service import TradeService, iso_week_label

logger = logging.getLogger(__name__)

WEEKS_IN_BREAKDOWN = 12
TOP_SYMBOLS = 5


def _day(value: Any) -> date:
    return value.date() if isinstance(value, datetime) else value


def _money(value: float) -> float:
    return round(value, 2)


def _ratio(value: float) -> float:
    return round(value, 4) if math.isfinite(value) else value


def _win_rate(pnls: Sequence[float]) -> float:
    return sum(1 for p in pnls if p > 0) / len(pnls) * 100 if pnls else 0.0


def _sample_std(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / (len(values) - 1))


# --- Metric blocks ---

def performance_scores(pnls: Sequence[float]) -> schemas.PerformanceScores:
    scores = schemas.PerformanceScores()
    if not pnls:
        return scores

    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    n = len(pnls)
    gross_profit = sum(wins)
    gross_loss = abs(sum(losses))
    total = sum(pnls)

    profit_factor = gross_profit / gross_loss if gross_loss > 0 else (math.inf if gross_profit > 0 else 0.0)
    gain_to_pain = total / gross_loss if gross_loss > 0 else (math.inf if total > 0 else 0.0)

    avg_win = gross_profit / len(wins) if wins else 0.0
    avg_loss = gross_loss / len(losses) if losses else 0.0
    win_loss_ratio = avg_win / avg_loss if avg_loss > 0 else (math.inf if avg_win > 0 else 0.0)

    win_pct = len(wins) / n
    loss_pct = len(losses) / n
    adjusted = (avg_win * win_pct) / (avg_loss * loss_pct) if avg_loss * loss_pct > 0 else 0.0
    expectancy = win_pct * avg_win - loss_pct * avg_loss

    kelly = 0.0
    if math.isfinite(win_loss_ratio) and win_loss_ratio > 0:
        kelly = win_pct - (1 - win_pct) / win_loss_ratio

    std_all = _sample_std(pnls)
    mean = total / n
    sqn = mean / std_all * math.sqrt(n) if std_all > 0 else 0.0
    sharpe = mean / std_all if std_all > 0 else 0.0

    # Drawdown over cumulative P&L, peak starts at zero
    peak = cumulative = max_drawdown = 0.0
    for p in pnls:
        cumulative += p
        peak = max(peak, cumulative)
        max_drawdown = max(max_drawdown, peak - cumulative)
    drawdown_percent = max_drawdown / peak * 100 if peak > 0 else 0.0

    # Streaks; a flat trade resets both counters
    win_streak = loss_streak = max_wins = max_losses = 0
    for p in pnls:
        if p > 0:
            win_streak, loss_streak = win_streak + 1, 0
        elif p < 0:
            win_streak, loss_streak = 0, loss_streak + 1
        else:
            win_streak = loss_streak = 0
        max_wins = max(max_wins, win_streak)
        max_losses = max(max_losses, loss_streak)

    return schemas.PerformanceScores(
        gross_profit=_money(gross_profit),
        gross_loss=_money(gross_loss),
        profit_factor=_ratio(profit_factor),
        gain_to_pain_ratio=_ratio(gain_to_pain),
        win_loss_ratio=_ratio(win_loss_ratio),
        adjusted_win_loss_ratio=_ratio(adjusted),
        trading_expectancy=_money(expectancy),
        kelly_criterion=_ratio(kelly),
        std_dev_pnl=_money(std_all),
        std_dev_wins=_money(_sample_std(wins)),
        std_dev_losses=_money(_sample_std(losses)),
        system_quality_number=_ratio(sqn),
        sharpe_ratio=_ratio(sharpe),
        max_drawdown=_money(max_drawdown),
        max_drawdown_percent=_ratio(drawdown_percent),
        max_consecutive_wins=max_wins,
        max_consecutive_losses=max_losses,
    )


def period_breakdown(series: Sequence[TradePnL], label) -> List[schemas.PeriodBreakdown]:
    buckets: Dict[str, List[float]] = defaultdict(list)
    for t in series:
        buckets[label(t.date)].append(t.pnl)
    return [
        schemas.PeriodBreakdown(
            period=period,
            pnl=_money(sum(pnls)),
            trade_count=len(pnls),
            win_rate=_ratio(_win_rate(pnls)),
        )
        for period, pnls in sorted(buckets.items())
    ]


def symbol_statistics(series: Sequence[TradePnL], trades: Sequence[Any]) -> schemas.SymbolStatistics:
    realized: Dict[str, List[float]] = defaultdict(list)
    for t in series:
        realized[t.symbol].append(t.pnl)
    counts: Dict[str, int] = defaultdict(int)
    for trade in trades:
        counts[trade.symbol] += 1
    if not counts:
        return schemas.SymbolStatistics()

    stats = {
        symbol: schemas.SymbolStat(
            symbol=symbol,
            pnl=_money(sum(realized.get(symbol, []))),
            trade_count=count,
            win_rate=_ratio(_win_rate(realized.get(symbol, []))),
        )
        for symbol, count in counts.items()
    }
    with_pnl = [stats[s] for s in realized]
    by_pnl = sorted(with_pnl, key=lambda s: s.pnl, reverse=True)
    by_count = sorted(stats.values(), key=lambda s: (-s.trade_count, s.symbol))
    return schemas.SymbolStatistics(
        best_symbol=by_pnl[0] if by_pnl else None,
        worst_symbol=by_pnl[-1] if by_pnl else None,
        most_traded_symbol=by_count[0],
        top_profitable=[s for s in by_pnl if s.pnl > 0][:TOP_SYMBOLS],
        top_losing=sorted((s for s in with_pnl if s.pnl < 0), key=lambda s: s.pnl)[:TOP_SYMBOLS],
        most_active=by_count[:TOP_SYMBOLS],
    )


def time_statistics(series: Sequence[TradePnL]) -> schemas.TimeStatistics:
    if not series:
        return schemas.TimeStatistics()
    daily: Dict[date, float] = defaultdict(float)
    monthly: Dict[str, float] = defaultdict(float)
    weekday: Dict[int, List[float]] = defaultdict(list)
    for t in series:
        daily[t.date] += t.pnl
        monthly[f"{t.date:%Y-%m}"] += t.pnl
        weekday[t.date.weekday()].append(t.pnl)

    best_day = max(daily.items(), key=lambda kv: kv[1])
    worst_day = min(daily.items(), key=lambda kv: kv[1])
    best_month = max(monthly.items(), key=lambda kv: kv[1])
    worst_month = min(monthly.items(), key=lambda kv: kv[1])
    winning_days = [v for v in daily.values() if v > 0]
    losing_days = [v for v in daily.values() if v < 0]

    return schemas.TimeStatistics(
        best_day=schemas.DayPnL(period=best_day[0].isoformat(), pnl=_money(best_day[1])),
        worst_day=schemas.DayPnL(period=worst_day[0].isoformat(), pnl=_money(worst_day[1])),
        best_month=schemas.DayPnL(period=best_month[0], pnl=_money(best_month[1])),
        worst_month=schemas.DayPnL(period=worst_month[0], pnl=_money(worst_month[1])),
        average_winning_day=_money(sum(winning_days) / len(winning_days)) if winning_days else 0.0,
        average_losing_day=_money(sum(losing_days) / len(losing_days)) if losing_days else 0.0,
        day_of_week=[
            schemas.DayOfWeekStat(
                day_name=calendar.day_name[day],
                pnl=_money(sum(pnls)),
                trade_count=len(pnls),
                win_rate=_ratio(_win_rate(pnls)),
            )
            for day, pnls in sorted(weekday.items())
        ],
    )


def commission_statistics(trades: Sequence[Any], gross_profit: float) -> schemas.CommissionStatistics:
    total = sum(t.fee or 0.0 for t in trades)
    trading_days = len({_day(t.date) for t in trades})
    return schemas.CommissionStatistics(
        total_commissions=_money(total),
        avg_commission_per_trade=_money(total / len(trades)) if trades else 0.0,
        avg_commission_per_day=_money(total / trading_days) if trading_days else 0.0,
        commission_percent_of_profit=_ratio(total / gross_profit * 100) if gross_profit > 0 else 0.0,
    )


def dividend_statistics(dividends: Sequence[Any]) -> schemas.DividendStatistics:
    if not dividends:
        return schemas.DividendStatistics()
    by_symbol: Dict[str, float] = defaultdict(float)
    for d in dividends:
        by_symbol[d.symbol] += d.amount
    total = sum(by_symbol.values())
    top_symbol, top_amount = max(by_symbol.items(), key=lambda kv: kv[1])
    return schemas.DividendStatistics(
        total_dividends=_money(total),
        dividend_count=len(dividends),
        average_dividend=_money(total / len(dividends)),
        symbol_count=len(by_symbol),
        top_symbol=top_symbol,
        top_symbol_amount=_money(top_amount),
    )


def trade_statistics(trades: Sequence[Any]) -> schemas.TradeStatistics:
    if not trades:
        return schemas.TradeStatistics()
    days = [_day(t.date) for t in trades]
    first, last = min(days), max(days)
    total_days = (last - first).days + 1
    trading_days = len(set(days))
    n = len(trades)
    return schemas.TradeStatistics(
        total_trades=n,
        buy_trades=sum(1 for t in trades if t.type in models.BUY_SIDE_TYPES),
        sell_trades=sum(1 for t in trades if t.type in models.SELL_SIDE_TYPES),
        total_volume=_money(sum(t.quantity * t.price for t in trades)),
        trading_days=trading_days,
        total_days_in_period=total_days,
        avg_trades_per_day=_ratio(n / trading_days),
        avg_trades_per_week=_ratio(n / max(1.0, total_days / 7.0)),
        avg_trades_per_month=_ratio(n / max(1.0, total_days / 30.0)),
        first_trade_date=first,
        last_trade_date=last,
    )


def summarize(trades: Sequence[Any], dividends: Sequence[Any] = (), since: Optional[date] = None) -> schemas.TradingSummary:
    """Full metric bundle for a set of trades and dividends.

    With `since`, every trade still feeds FIFO matching (earlier lots keep
    providing cost basis) but only sells and trades on or after that day are
    reported.
    """
    trades = list(trades)
    dividends = list(dividends)
    series = realized_pnl_series(trades)
    if since is not None:
        series = [t for t in series if t.date >= since]
        trades = [t for t in trades if _day(t.date) >= since]
    pnls = [t.pnl for t in series]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    closed = len(pnls)

    realized = sum(pnls)
    total_dividends = sum(d.amount for d in dividends)
    performance = performance_scores(pnls)
    weekly = period_breakdown(series, iso_week_label)[-WEEKS_IN_BREAKDOWN:]

    return schemas.TradingSummary(
        total_realized_pnl=_money(realized),
        total_dividends=_money(total_dividends),
        net_pnl=_money(realized + total_dividends),
        total_fees=_money(sum(t.fee or 0.0 for t in trades)),
        total_trades=len(trades),
        closed_trades=closed,
        winning_trades=len(wins),
        losing_trades=len(losses),
        breakeven_trades=closed - len(wins) - len(losses),
        win_rate=_ratio(len(wins) / closed * 100) if closed else 0.0,
        loss_rate=_ratio(len(losses) / closed * 100) if closed else 0.0,
        average_win=_money(sum(wins) / len(wins)) if wins else 0.0,
        average_loss=_money(abs(sum(losses)) / len(losses)) if losses else 0.0,
        largest_win=_money(max(wins)) if wins else 0.0,
        largest_loss=_money(min(losses)) if losses else 0.0,
        average_trade_pnl=_money(realized / closed) if closed else 0.0,
        performance=performance,
        yearly=period_breakdown(series, lambda d: f"{d.year}"),
        monthly=period_breakdown(series, lambda d: f"{d:%Y-%m}"),
        weekly=weekly,
        symbol_stats=symbol_statistics(series, trades),
        time_stats=time_statistics(series),
        commission_stats=commission_statistics(trades, sum(wins)),
        dividend_stats=dividend_statistics(dividends),
        trade_stats=trade_statistics(trades),
    )


class SummaryService:

    @staticmethod
    def get_trading_summary(
        db: Session,
        user_id: str,
        account_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> schemas.TradingSummary:
        """Fetch history for the scope and summarize it.

        Trades before `start_date` are still fetched so lots opened earlier
        provide cost basis for sells inside the range.
        """
        trades = TradeService.list_trades(db, user_id, account_id, end=end_date)
        dividends = DividendService.list_dividends(db, user_id, account_id, start=start_date, end=end_date)
        return summarize(trades, dividends, since=start_date)
