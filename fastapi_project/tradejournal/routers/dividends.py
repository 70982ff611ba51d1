"""
Dividends Router

Beginner guide:
- CRUD for dividend payments (cash, reinvested, qualified, non-qualified).
- GET /dividends/summary gives totals, year-to-date, last 30 days, a 12-month breakdown and top payers.
- Negative amounts are allowed; brokers use them for adjustments.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_current_user_id
from ..services.dividend_service import DividendService

router = APIRouter(prefix="/dividends", tags=["Dividends"])


@router.get("/", response_model=List[schemas.DividendRead])
def list_dividends(
    account_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return DividendService.list_dividends(db, user_id, account_id, start=start_date, end=end_date)


@router.post("/", response_model=schemas.DividendRead, status_code=status.HTTP_201_CREATED)
def create_dividend(
    payload: schemas.DividendCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return DividendService.create_dividend(db, user_id, payload)


@router.get("/summary", response_model=schemas.DividendSummary)
def dividend_summary(
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return DividendService.get_summary(db, user_id, account_id)


@router.get("/symbol/{symbol}", response_model=List[schemas.DividendRead])
def dividends_for_symbol(
    symbol: str,
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return DividendService.list_by_symbol(db, user_id, symbol, account_id)


@router.get("/{dividend_id}", response_model=schemas.DividendRead)
def get_dividend(dividend_id: int, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    return DividendService.get_dividend(db, user_id, dividend_id)


@router.put("/{dividend_id}", response_model=schemas.DividendRead)
def update_dividend(
    dividend_id: int,
    payload: schemas.DividendUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return DividendService.update_dividend(db, user_id, dividend_id, payload)


@router.delete("/{dividend_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_dividend(dividend_id: int, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    DividendService.delete_dividend(db, user_id, dividend_id)
