"""
Accounts Router

Beginner guide:
- An account is one brokerage account; every trade, dividend and position hangs off one.
- Deleting an account deletes everything recorded in it.
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_current_user_id
from ..services.accounts_service import AccountsService

router = APIRouter(prefix="/accounts", tags=["Accounts"])


@router.get("/", response_model=List[schemas.AccountRead])
def list_accounts(db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    return AccountsService.list_accounts(db, user_id)


@router.post("/", response_model=schemas.AccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: schemas.AccountCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return AccountsService.create_account(db, user_id, payload)


@router.get("/{account_id}", response_model=schemas.AccountRead)
def get_account(account_id: int, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    return AccountsService.get_account(db, user_id, account_id)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(account_id: int, db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)):
    """Delete the account with its trades, dividends and cached positions."""
    AccountsService.delete_account(db, user_id, account_id)
