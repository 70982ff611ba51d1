"""
Trades Router

Beginner guide:
- CRUD for individual trades; every change recalculates the affected positions.
- Analytics: per-symbol summary and monthly/weekly time analysis.
- Options: GET /trades/spreads lists detected strategies, POST /trades/detect-spreads groups new legs.
- Maintenance: remove duplicate rows, or wipe all trades of one account.

Static paths are declared before /{trade_id} so they are not captured by it.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_current_user_id
from ..services import spread_detector
from ..services.accounts_service import AccountsService
from ..services.trade_service import TradeService

router = APIRouter(prefix="/trades", tags=["Trades"])


@router.get("/", response_model=List[schemas.TradeRead])
def list_trades(
    account_id: Optional[int] = None,
    symbol: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return TradeService.list_trades(db, user_id, account_id, start=start_date, end=end_date, symbol=symbol)


@router.post("/", response_model=schemas.TradeRead, status_code=status.HTTP_201_CREATED)
def create_trade(
    payload: schemas.TradeCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return TradeService.create_trade(db, user_id, payload)


@router.get("/symbol/{symbol}/summary", response_model=schemas.SymbolTradeSummary)
def symbol_summary(
    symbol: str,
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return TradeService.get_symbol_summary(db, user_id, symbol, account_id)


@router.get("/time-analysis", response_model=schemas.TimeAnalysis)
def time_analysis(
    account_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return TradeService.get_time_analysis(db, user_id, account_id, start=start_date, end=end_date)


@router.get("/spreads", response_model=List[schemas.OptionSpreadGroup])
def list_spreads(
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return spread_detector.list_spread_groups(db, user_id, account_id)


@router.post("/detect-spreads", response_model=schemas.SpreadDetectionResult)
def detect_spreads(
    account_id: int = Query(..., description="Account whose ungrouped option legs are scanned"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    AccountsService.get_account(db, user_id, account_id)
    detected = spread_detector.detect_and_group(db, user_id, account_id)
    return schemas.SpreadDetectionResult(
        groups_detected=len(detected),
        groups=[
            {
                "name": d.name,
                "spread_type": d.spread_type.value,
                "spread_group_id": d.group_id,
                "net_premium": round(d.net_premium, 2),
                "trade_ids": [leg.trade_id for leg in d.ordered_legs()],
            }
            for d in detected
        ],
    )


@router.post("/remove-duplicates", response_model=schemas.DuplicateCleanupResult)
def remove_duplicates(
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return TradeService.find_and_remove_duplicates(db, user_id, account_id)


@router.delete("/account/{account_id}", response_model=schemas.DeleteAllTradesResult)
def delete_all_trades(account_id: int, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    return TradeService.delete_all_trades_for_account(db, user_id, account_id)


@router.get("/{trade_id}", response_model=schemas.TradeRead)
def get_trade(trade_id: int, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    return TradeService.get_trade(db, user_id, trade_id)


@router.put("/{trade_id}", response_model=schemas.TradeRead)
def update_trade(
    trade_id: int,
    payload: schemas.TradeUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return TradeService.update_trade(db, user_id, trade_id, payload)


@router.delete("/{trade_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_trade(trade_id: int, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    TradeService.delete_trade(db, user_id, trade_id)
