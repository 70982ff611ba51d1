"""
Tests for position rebuilding and the quoted portfolio view
"""

import pytest

from tradejournal import models
from tradejournal.services.lot_matcher import realized_pnl_series
from tradejournal.services.portfolio_service import PortfolioService
from tradejournal.services.price_service import StockQuote


def _positions(db, account_id):
    return db.query(models.Portfolio).filter(models.Portfolio.account_id == account_id).all()


class TestRecalculate:

    def test_open_position_from_fifo(self, db_session, account, add_trade):
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02")
        add_trade("AAPL", "BUY", 10, 110.0, "2024-01-03")
        add_trade("AAPL", "SELL", 15, 120.0, "2024-01-04")

        position = PortfolioService.recalculate_symbol(db_session, "local", account.id, "AAPL")

        # Remaining lot is 5 @ 110
        assert position.quantity == pytest.approx(5)
        assert position.average_price == pytest.approx(110.0)

    def test_recalculate_is_idempotent(self, db_session, account, add_trade):
        add_trade("MSFT", "BUY", 4, 300.0, "2024-02-01")
        add_trade("MSFT", "BUY", 6, 310.0, "2024-02-05")

        PortfolioService.recalculate(db_session, "local", account.id)
        first = [(p.symbol, p.quantity, p.average_price) for p in _positions(db_session, account.id)]
        PortfolioService.recalculate(db_session, "local", account.id)
        second = [(p.symbol, p.quantity, p.average_price) for p in _positions(db_session, account.id)]

        assert first == second
        assert len(second) == 1
        # (4*300 + 6*310) / 10 = 306
        assert second[0][2] == pytest.approx(306.0)

    def test_closed_position_row_is_deleted(self, db_session, account, add_trade):
        add_trade("TSLA", "BUY", 5, 200.0, "2024-03-01")
        PortfolioService.recalculate(db_session, "local", account.id)
        assert len(_positions(db_session, account.id)) == 1

        add_trade("TSLA", "SELL", 5, 210.0, "2024-03-02")
        PortfolioService.recalculate(db_session, "local", account.id)
        assert _positions(db_session, account.id) == []

    def test_dust_below_epsilon_counts_as_flat(self, db_session, account, add_trade):
        add_trade("KO", "BUY", 1.00005, 60.0, "2024-03-01")
        add_trade("KO", "SELL", 1.0, 61.0, "2024-03-02")
        assert PortfolioService.recalculate_symbol(db_session, "local", account.id, "KO") is None

    def test_accounts_are_isolated(self, db_session, make_account, account, add_trade):
        other = make_account("IRA")
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02")
        add_trade("AAPL", "SELL", 10, 120.0, "2024-01-03", account_id=other.id)

        PortfolioService.recalculate_all(db_session, "local")

        positions = PortfolioService.get_portfolio(db_session, "local")
        assert [(p.account_id, p.quantity) for p in positions] == [(account.id, 10)]


class TestPortfolioWithQuotes:

    def test_marks_to_market_and_falls_back_to_cost(self, db_session, account, add_trade):
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02")
        add_trade("XYZ", "BUY", 2, 50.0, "2024-01-02")
        PortfolioService.recalculate(db_session, "local", account.id)

        def fake_quotes(symbols):
            return {
                "AAPL": StockQuote(
                    symbol="AAPL", price=120.0, change=2.0, change_percent=1.69,
                    previous_close=118.0, day_high=121.0, day_low=117.5, volume=1000, market_state="REGULAR",
                )
            }

        view = PortfolioService.get_portfolio_with_quotes(db_session, "local", quote_provider=fake_quotes)
        by_symbol = {h["symbol"]: h for h in view["holdings"]}

        assert by_symbol["AAPL"]["market_value"] == 1200.0
        assert by_symbol["AAPL"]["unrealized_pnl"] == 200.0
        # No quote: valued at average price
        assert by_symbol["XYZ"]["current_price"] == 50.0
        assert by_symbol["XYZ"]["unrealized_pnl"] == 0.0
        assert view["total_cost"] == 1100.0
        assert view["total_value"] == 1300.0
        assert view["unrealized_pnl_percent"] == pytest.approx(18.18)


class TestOptionPositions:

    def test_closed_short_option_leaves_no_position(self, db_session, account, add_trade):
        add_trade("XYZ250620P40", "SELL_TO_OPEN", 1, 5.0, "2025-01-02", instrument_type="Option", contract_multiplier=100)
        add_trade("XYZ250620P40", "BUY_TO_CLOSE", 1, 2.0, "2025-01-10", instrument_type="Option", contract_multiplier=100)

        PortfolioService.recalculate(db_session, "local", account.id)

        assert _positions(db_session, account.id) == []
        series = realized_pnl_series(db_session.query(models.Trade).all())
        assert [t.pnl for t in series] == [pytest.approx(300.0)]

    def test_open_short_option_is_not_held(self, db_session, account, add_trade):
        add_trade("XYZ250620P40", "SELL_TO_OPEN", 1, 5.0, "2025-01-02", instrument_type="Option")
        assert PortfolioService.recalculate_symbol(db_session, "local", account.id, "XYZ250620P40") is None

    def test_long_option_is_valued_per_contract(self, db_session, account, add_trade):
        add_trade("XYZ250620C50", "BUY_TO_OPEN", 1, 2.0, "2025-01-02", instrument_type="Option", contract_multiplier=100)
        add_trade("AAPL", "BUY", 10, 100.0, "2025-01-02")
        PortfolioService.recalculate(db_session, "local", account.id)

        def fake_quotes(symbols):
            return {
                "XYZ250620C50": StockQuote(
                    symbol="XYZ250620C50", price=3.0, change=1.0, change_percent=50.0,
                    previous_close=2.0, day_high=3.1, day_low=2.0, volume=10, market_state="REGULAR",
                )
            }

        view = PortfolioService.get_portfolio_with_quotes(db_session, "local", quote_provider=fake_quotes)
        option = {h["symbol"]: h for h in view["holdings"]}["XYZ250620C50"]

        assert option["multiplier"] == 100
        assert (option["cost_basis"], option["market_value"], option["unrealized_pnl"]) == (200.0, 300.0, 100.0)
        # AAPL has no quote and sits at cost
        assert (view["total_cost"], view["total_value"], view["unrealized_pnl"]) == (1200.0, 1300.0, 100.0)
