"""
PortfolioService: rebuilds cached positions from trade history.

Positions are never patched incrementally. Every caller that changes trades
(create/update/delete, import, duplicate cleanup, bulk delete) invokes one of
the recalculate methods afterwards.
"""
import logging
from datetime import datetime, UTC
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from .. import models
from .lot_matcher import match_trades, trade_sort_key
from .price_service import get_quotes

logger = logging.getLogger(__name__)

# Holdings smaller than this are treated as flat
POSITION_EPSILON = 1e-4


class PortfolioService:

    @staticmethod
    def recalculate_symbol(db: Session, user_id: str, account_id: int, symbol: str, commit: bool = True) -> Optional[models.Portfolio]:
        """Recompute one (account, symbol) position. Returns the row, or None if flat."""
        trades = (
            db.query(models.Trade)
            .filter(
                models.Trade.user_id == user_id,
                models.Trade.account_id == account_id,
                models.Trade.symbol == symbol,
            )
            .order_by(models.Trade.date, models.Trade.id)
            .all()
        )
        result = match_trades(sorted(trades, key=trade_sort_key))
        quantity = result.open_quantity

        existing = (
            db.query(models.Portfolio)
            .filter(
                models.Portfolio.user_id == user_id,
                models.Portfolio.account_id == account_id,
                models.Portfolio.symbol == symbol,
            )
            .first()
        )

        if abs(quantity) < POSITION_EPSILON or quantity <= 0:
            if existing is not None:
                db.delete(existing)
            position = None
        else:
            average_price = result.open_cost / quantity
            if existing is None:
                existing = models.Portfolio(
                    user_id=user_id, account_id=account_id, symbol=symbol,
                    quantity=quantity, average_price=average_price, multiplier=result.multiplier,
                )
                db.add(existing)
            else:
                existing.quantity = quantity
                existing.average_price = average_price
                existing.multiplier = result.multiplier
                existing.updated_at = datetime.now(UTC)
            position = existing

        if commit:
            db.commit()
        return position

    @staticmethod
    def recalculate_symbols(db: Session, user_id: str, account_id: int, symbols: Iterable[str]) -> int:
        """Recompute a set of symbols in one account with a single commit."""
        count = 0
        for symbol in sorted(set(symbols)):
            PortfolioService.recalculate_symbol(db, user_id, account_id, symbol, commit=False)
            count += 1
        db.commit()
        return count

    @staticmethod
    def recalculate(db: Session, user_id: str, account_id: int) -> int:
        """Recompute every symbol ever traded (or currently held) in the account."""
        traded = {
            row[0]
            for row in db.query(models.Trade.symbol)
            .filter(models.Trade.user_id == user_id, models.Trade.account_id == account_id)
            .distinct()
        }
        held = {
            row[0]
            for row in db.query(models.Portfolio.symbol)
            .filter(models.Portfolio.user_id == user_id, models.Portfolio.account_id == account_id)
        }
        count = PortfolioService.recalculate_symbols(db, user_id, account_id, traded | held)
        logger.info(f"Recalculated {count} positions for account {account_id}")
        return count

    @staticmethod
    def recalculate_all(db: Session, user_id: str) -> int:
        """Recompute every (account, symbol) pair for the user."""
        account_ids = {
            row[0]
            for row in db.query(models.Trade.account_id).filter(models.Trade.user_id == user_id).distinct()
        } | {
            row[0]
            for row in db.query(models.Portfolio.account_id).filter(models.Portfolio.user_id == user_id).distinct()
        }
        return sum(PortfolioService.recalculate(db, user_id, account_id) for account_id in sorted(account_ids))

    @staticmethod
    def get_portfolio(db: Session, user_id: str, account_id: Optional[int] = None) -> List[models.Portfolio]:
        q = db.query(models.Portfolio).filter(models.Portfolio.user_id == user_id)
        if account_id is not None:
            q = q.filter(models.Portfolio.account_id == account_id)
        return q.order_by(models.Portfolio.symbol).all()

    @staticmethod
    def get_portfolio_with_quotes(
        db: Session,
        user_id: str,
        account_id: Optional[int] = None,
        quote_provider: Callable[[Iterable[str]], Dict[str, Any]] = get_quotes,
    ) -> Dict[str, Any]:
        """Positions marked to market. Symbols without a quote are valued at cost.

        Option prices are per share; values are scaled by the contract multiplier.
        """
        positions = PortfolioService.get_portfolio(db, user_id, account_id)
        quotes = quote_provider([p.symbol for p in positions]) if positions else {}

        holdings = []
        total_cost = 0.0
        total_value = 0.0
        for p in positions:
            quote = quotes.get(p.symbol.upper())
            if quote is not None:
                p.current_price = quote.price
            current_price = p.current_price if p.current_price is not None else p.average_price
            multiplier = p.multiplier or 1.0
            cost_basis = p.quantity * p.average_price * multiplier
            market_value = p.quantity * current_price * multiplier
            unrealized = market_value - cost_basis
            total_cost += cost_basis
            total_value += market_value
            holdings.append({
                "id": p.id,
                "account_id": p.account_id,
                "symbol": p.symbol,
                "quantity": p.quantity,
                "multiplier": multiplier,
                "average_price": round(p.average_price, 4),
                "current_price": round(current_price, 4),
                "cost_basis": round(cost_basis, 2),
                "market_value": round(market_value, 2),
                "unrealized_pnl": round(unrealized, 2),
                "unrealized_pnl_percent": round(unrealized / cost_basis * 100, 2) if cost_basis else 0.0,
                "change": quote.change if quote else None,
                "change_percent": quote.change_percent if quote else None,
                "day_high": quote.day_high if quote else None,
                "day_low": quote.day_low if quote else None,
                "volume": quote.volume if quote else None,
                "market_state": quote.market_state if quote else None,
            })

        if quotes:
            db.commit()

        unrealized_total = total_value - total_cost
        return {
            "holdings": holdings,
            "total_cost": round(total_cost, 2),
            "total_value": round(total_value, 2),
            "unrealized_pnl": round(unrealized_total, 2),
            "unrealized_pnl_percent": round(unrealized_total / total_cost * 100, 2) if total_cost else 0.0,
        }
