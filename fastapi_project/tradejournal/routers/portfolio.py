"""
Portfolio Router

Beginner guide:
- GET /portfolio returns cached open positions (rebuilt from trades, never edited by hand).
- GET /portfolio/quotes marks them to market with yfinance quotes; symbols without a quote are valued at cost.
- POST /portfolio/recalculate rebuilds positions from the full trade history.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_current_user_id
from ..services.accounts_service import AccountsService
from ..services.portfolio_service import PortfolioService

router = APIRouter(prefix="/portfolio", tags=["Portfolio"])


@router.get("/", response_model=List[schemas.PortfolioRead])
def list_positions(
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return PortfolioService.get_portfolio(db, user_id, account_id)


@router.get("/quotes", response_model=schemas.PortfolioWithQuotes)
def positions_with_quotes(
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return PortfolioService.get_portfolio_with_quotes(db, user_id, account_id)


@router.post("/recalculate", response_model=schemas.RecalculateResult)
def recalculate(
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Rebuild one account's positions, or every account's when no id is given."""
    if account_id is None:
        count = PortfolioService.recalculate_all(db, user_id)
    else:
        AccountsService.get_account(db, user_id, account_id)
        count = PortfolioService.recalculate(db, user_id, account_id)
    return schemas.RecalculateResult(symbols_recalculated=count)
