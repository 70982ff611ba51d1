"""
Dashboard Router

Provides the headline numbers and chart series for the UI in one call.
Series run day by day from the first to the last active date so charts
need no gap filling on the client.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_current_user_id
from ..services.dashboard_service import DashboardService

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/metrics", response_model=schemas.DashboardMetrics)
def dashboard_metrics(
    account_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return DashboardService.get_metrics(db, user_id, account_id, start_date, end_date)
