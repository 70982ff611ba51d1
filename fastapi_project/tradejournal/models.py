"""
ORM models for the trading journal.

Trades and dividends are the event log (source of truth). Portfolio rows are a
cache rebuilt from trades by PortfolioService and never patched directly.
"""

from datetime import datetime, UTC

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base

# --- Trade vocabulary ---

TRADE_TYPES = (
    "BUY",
    "SELL",
    "BUY_TO_OPEN",
    "SELL_TO_OPEN",
    "BUY_TO_CLOSE",
    "SELL_TO_CLOSE",
    "ASSIGNED",
    "EXERCISED",
    "EXPIRED",
)
BUY_SIDE_TYPES = frozenset({"BUY", "BUY_TO_OPEN", "BUY_TO_CLOSE"})
# ASSIGNED/EXERCISED/EXPIRED remove contracts from the book at their recorded price
SELL_SIDE_TYPES = frozenset(
    {"SELL", "SELL_TO_OPEN", "SELL_TO_CLOSE", "ASSIGNED", "EXERCISED", "EXPIRED"}
)
OPTION_EVENT_TYPES = frozenset({"ASSIGNED", "EXERCISED", "EXPIRED"})

INSTRUMENT_TYPES = ("Stock", "Option")
OPTION_TYPES = ("Call", "Put")
DIVIDEND_TYPES = ("CASH", "REINVESTED", "QUALIFIED", "NON_QUALIFIED")

DEFAULT_CONTRACT_MULTIPLIER = 100


def _utcnow():
    return datetime.now(UTC)


class Account(Base):
    __tablename__ = "accounts"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    currency = Column(String, default="USD", nullable=False)
    user_id = Column(String, index=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    trades = relationship("Trade", back_populates="account", cascade="all, delete-orphan")
    dividends = relationship("Dividend", back_populates="account", cascade="all, delete-orphan")
    positions = relationship("Portfolio", back_populates="account", cascade="all, delete-orphan")


class Trade(Base):
    __tablename__ = "trades"
    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String, index=True, nullable=False)
    instrument_type = Column(String, default="Stock", nullable=False)
    type = Column(String, nullable=False)  # one of TRADE_TYPES
    quantity = Column(Float, nullable=False)  # always positive, direction lives in `type`
    price = Column(Float, nullable=False)
    fee = Column(Float, default=0.0, nullable=False)
    currency = Column(String, default="USD", nullable=False)
    date = Column(DateTime, index=True, nullable=False)
    notes = Column(Text, nullable=True)

    # Option-only fields
    option_type = Column(String, nullable=True)  # Call / Put
    strike_price = Column(Float, nullable=True)
    expiration_date = Column(DateTime, nullable=True)
    underlying_symbol = Column(String, nullable=True, index=True)
    contract_multiplier = Column(Integer, default=DEFAULT_CONTRACT_MULTIPLIER, nullable=True)
    is_opening_trade = Column(Boolean, nullable=True)
    spread_type = Column(String, default="Single", nullable=True)
    spread_group_id = Column(String, nullable=True, index=True)
    spread_leg_number = Column(Integer, nullable=True)

    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    user_id = Column(String, index=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    account = relationship("Account", back_populates="trades")

    __table_args__ = (
        Index("ix_trades_user_account_symbol", "user_id", "account_id", "symbol"),
    )

    @property
    def is_option(self) -> bool:
        return self.instrument_type == "Option"

    @property
    def is_buy(self) -> bool:
        return self.type in BUY_SIDE_TYPES


class Dividend(Base):
    __tablename__ = "dividends"
    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String, index=True, nullable=False)
    amount = Column(Float, nullable=False)  # negative allowed for adjustments
    quantity = Column(Float, nullable=True)
    per_share_amount = Column(Float, nullable=True)
    type = Column(String, default="CASH", nullable=False)  # one of DIVIDEND_TYPES
    currency = Column(String, default="USD", nullable=False)
    payment_date = Column(DateTime, index=True, nullable=False)
    ex_dividend_date = Column(DateTime, nullable=True)
    record_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    tax_withheld = Column(Float, default=0.0, nullable=False)

    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    user_id = Column(String, index=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    account = relationship("Account", back_populates="dividends")


class Portfolio(Base):
    """Cached open position for one (user, account, symbol)."""

    __tablename__ = "portfolios"
    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String, index=True, nullable=False)
    quantity = Column(Float, nullable=False)
    average_price = Column(Float, nullable=False)
    current_price = Column(Float, nullable=True)
    multiplier = Column(Float, default=1.0, nullable=False)  # contract size for options
    user_id = Column(String, index=True, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    account = relationship("Account", back_populates="positions")

    __table_args__ = (
        UniqueConstraint("user_id", "account_id", "symbol", name="uq_portfolio_user_account_symbol"),
    )
