"""
Summary Router

Beginner guide:
- GET /summary returns the full statistics bundle: realized P&L, win rate, profit factor,
  drawdown, streaks, period breakdowns and per-symbol/time/commission/dividend stats.
- start_date/end_date limit what is reported; earlier buys still supply cost basis.
- Ratios that are unbounded (no losing trades) are returned as null.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_current_user_id
from ..services.summary_service import SummaryService

router = APIRouter(prefix="/summary", tags=["Summary"])


@router.get("/", response_model=schemas.TradingSummary)
def trading_summary(
    account_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return SummaryService.get_trading_summary(db, user_id, account_id, start_date, end_date)
