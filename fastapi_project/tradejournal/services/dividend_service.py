import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from .. import models, schemas
from ..utils.error_handling import ResourceNotFoundError
from .accounts_service import AccountsService

logger = logging.getLogger(__name__)

MONTHS_IN_SUMMARY = 12
TOP_SYMBOLS = 10


def _day(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def _months_back(today: date, count: int) -> date:
    """First day of the month `count - 1` months before `today`'s month."""
    index = today.year * 12 + today.month - 1 - (count - 1)
    return date(index // 12, index % 12 + 1, 1)


def summarize_dividends(dividends: Sequence[Any], today: date) -> schemas.DividendSummary:
    if not dividends:
        return schemas.DividendSummary()

    total = sum(d.amount for d in dividends)
    tax = sum(d.tax_withheld or 0.0 for d in dividends)
    year_start = date(today.year, 1, 1)
    month_window = _months_back(today, MONTHS_IN_SUMMARY)
    recent_cutoff = today - timedelta(days=30)

    monthly: Dict[str, List[float]] = defaultdict(list)
    by_symbol: Dict[str, List[float]] = defaultdict(list)
    ytd = last_30 = 0.0
    for d in dividends:
        paid = _day(d.payment_date)
        if year_start <= paid <= today:
            ytd += d.amount
        if recent_cutoff <= paid <= today:
            last_30 += d.amount
        if month_window <= paid <= today:
            monthly[f"{paid:%Y-%m}"].append(d.amount)
        by_symbol[d.symbol].append(d.amount)

    top = sorted(by_symbol.items(), key=lambda kv: sum(kv[1]), reverse=True)[:TOP_SYMBOLS]
    return schemas.DividendSummary(
        total_amount=round(total, 2),
        total_tax_withheld=round(tax, 2),
        net_amount=round(total - tax, 2),
        count=len(dividends),
        year_to_date=round(ytd, 2),
        last_30_days=round(last_30, 2),
        monthly=[
            schemas.DividendMonth(month=month, amount=round(sum(v), 2), count=len(v))
            for month, v in sorted(monthly.items(), reverse=True)
        ],
        top_symbols=[
            schemas.DividendSymbolTotal(symbol=symbol, amount=round(sum(v), 2), count=len(v))
            for symbol, v in top
        ],
    )


class DividendService:

    @staticmethod
    def list_dividends(
        db: Session,
        user_id: str,
        account_id: Optional[int] = None,
        start: Optional[Union[date, datetime]] = None,
        end: Optional[Union[date, datetime]] = None,
    ) -> List[models.Dividend]:
        q = db.query(models.Dividend).filter(models.Dividend.user_id == user_id)
        if account_id is not None:
            q = q.filter(models.Dividend.account_id == account_id)
        if start is not None:
            q = q.filter(models.Dividend.payment_date >= datetime.combine(_day(start), time.min))
        if end is not None:
            q = q.filter(models.Dividend.payment_date < datetime.combine(_day(end) + timedelta(days=1), time.min))
        return q.order_by(models.Dividend.payment_date, models.Dividend.id).all()

    @staticmethod
    def list_by_symbol(db: Session, user_id: str, symbol: str, account_id: Optional[int] = None) -> List[models.Dividend]:
        q = db.query(models.Dividend).filter(
            models.Dividend.user_id == user_id,
            models.Dividend.symbol == symbol.strip().upper(),
        )
        if account_id is not None:
            q = q.filter(models.Dividend.account_id == account_id)
        return q.order_by(models.Dividend.payment_date.desc()).all()

    @staticmethod
    def get_dividend(db: Session, user_id: str, dividend_id: int) -> models.Dividend:
        dividend = (
            db.query(models.Dividend)
            .filter(models.Dividend.id == dividend_id, models.Dividend.user_id == user_id)
            .first()
        )
        if dividend is None:
            raise ResourceNotFoundError("Dividend", dividend_id)
        return dividend

    @staticmethod
    def create_dividend(db: Session, user_id: str, payload: schemas.DividendCreate) -> models.Dividend:
        AccountsService.get_account(db, user_id, payload.account_id)
        dividend = models.Dividend(**payload.model_dump(), user_id=user_id)
        db.add(dividend)
        db.commit()
        db.refresh(dividend)
        logger.info(f"Recorded {dividend.type} dividend {dividend.id}: {dividend.symbol} {dividend.amount:.2f}")
        return dividend

    @staticmethod
    def update_dividend(db: Session, user_id: str, dividend_id: int, payload: schemas.DividendUpdate) -> models.Dividend:
        dividend = DividendService.get_dividend(db, user_id, dividend_id)
        for key, value in payload.model_dump(exclude_unset=True).items():
            setattr(dividend, key, value)
        db.commit()
        db.refresh(dividend)
        return dividend

    @staticmethod
    def delete_dividend(db: Session, user_id: str, dividend_id: int) -> None:
        dividend = DividendService.get_dividend(db, user_id, dividend_id)
        db.delete(dividend)
        db.commit()

    @staticmethod
    def get_summary(
        db: Session, user_id: str, account_id: Optional[int] = None, today: Optional[date] = None
    ) -> schemas.DividendSummary:
        dividends = DividendService.list_dividends(db, user_id, account_id)
        return summarize_dividends(dividends, today or date.today())
