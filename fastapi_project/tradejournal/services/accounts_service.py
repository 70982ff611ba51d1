import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from .. import models, schemas
from ..utils.error_handling import ResourceNotFoundError

logger = logging.getLogger(__name__)


class AccountsService:

    @staticmethod
    def create_account(db: Session, user_id: str, payload: schemas.AccountCreate) -> models.Account:
        account = models.Account(name=payload.name.strip(), currency=payload.currency.upper(), user_id=user_id)
        db.add(account)
        db.commit()
        db.refresh(account)
        logger.info(f"Created account {account.id} ({account.name}) for user {user_id}")
        return account

    @staticmethod
    def list_accounts(db: Session, user_id: str) -> List[models.Account]:
        return (
            db.query(models.Account)
            .filter(models.Account.user_id == user_id)
            .order_by(models.Account.id)
            .all()
        )

    @staticmethod
    def find_account(db: Session, user_id: str, account_id: int) -> Optional[models.Account]:
        """Account owned by the user, or None."""
        return (
            db.query(models.Account)
            .filter(models.Account.id == account_id, models.Account.user_id == user_id)
            .first()
        )

    @staticmethod
    def get_account(db: Session, user_id: str, account_id: int) -> models.Account:
        """Like find_account but raises; foreign accounts look the same as missing ones."""
        account = AccountsService.find_account(db, user_id, account_id)
        if account is None:
            raise ResourceNotFoundError("Account", account_id)
        return account

    @staticmethod
    def delete_account(db: Session, user_id: str, account_id: int) -> None:
        account = AccountsService.get_account(db, user_id, account_id)
        scope = dict(user_id=user_id, account_id=account_id)
        trades = db.query(models.Trade).filter_by(**scope).delete(synchronize_session=False)
        dividends = db.query(models.Dividend).filter_by(**scope).delete(synchronize_session=False)
        positions = db.query(models.Portfolio).filter_by(**scope).delete(synchronize_session=False)
        db.delete(account)
        db.commit()
        logger.info(
            f"Deleted account {account_id}: {trades} trades, {dividends} dividends, {positions} positions"
        )
