"""
Test configuration and shared fixtures.

- The app engine points at an in-memory database; every test gets its own
  fresh in-memory engine through `db_session`.
- `client` is a TestClient whose get_db dependency yields that session.
- Factories (`make_account`, `add_trade`, `add_dividend`) keep tests short.
"""

import os

# Must be set before the app modules read them
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DISABLE_AUTH"] = "1"
os.environ["IMPORT_RATE_LIMIT"] = "1000/minute"

from datetime import datetime  # noqa: E402
from typing import Generator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from tradejournal import models  # noqa: E402
from tradejournal.database import Base, get_db  # noqa: E402
from tradejournal.main import app  # noqa: E402

USER_ID = "local"


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """A session on a private in-memory database, dropped after the test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """
    Create a test client with dependency override for database session.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def make_account(db_session: Session):
    def _make(name: str = "Brokerage", user_id: str = USER_ID) -> models.Account:
        account = models.Account(name=name, currency="USD", user_id=user_id)
        db_session.add(account)
        db_session.commit()
        db_session.refresh(account)
        return account
    return _make


@pytest.fixture
def account(make_account) -> models.Account:
    return make_account()


@pytest.fixture
def add_trade(db_session: Session, account: models.Account):
    def _add(symbol: str, type: str, quantity: float, price: float, date: str, fee: float = 0.0,
             account_id: int = None, user_id: str = USER_ID, **extra) -> models.Trade:
        trade = models.Trade(
            symbol=symbol,
            type=type,
            quantity=quantity,
            price=price,
            fee=fee,
            date=datetime.fromisoformat(date),
            account_id=account_id or account.id,
            user_id=user_id,
            instrument_type=extra.pop("instrument_type", "Stock"),
            **extra,
        )
        db_session.add(trade)
        db_session.commit()
        db_session.refresh(trade)
        return trade
    return _add


@pytest.fixture
def add_dividend(db_session: Session, account: models.Account):
    def _add(symbol: str, amount: float, date: str, **extra) -> models.Dividend:
        dividend = models.Dividend(
            symbol=symbol,
            amount=amount,
            payment_date=datetime.fromisoformat(date),
            account_id=extra.pop("account_id", account.id),
            user_id=extra.pop("user_id", USER_ID),
            **extra,
        )
        db_session.add(dividend)
        db_session.commit()
        db_session.refresh(dividend)
        return dividend
    return _add
