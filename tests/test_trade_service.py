"""
Tests for TradeService: the trade store, symbol analytics and bulk maintenance
"""

from datetime import date, datetime

import pytest

from tradejournal import models, schemas
from tradejournal.services.portfolio_service import PortfolioService
from tradejournal.services.trade_service import TradeService
from tradejournal.utils.error_handling import ResourceNotFoundError, ValidationError


def _payload(account, **overrides):
    data = dict(
        account_id=account.id, symbol="aapl", type="BUY", quantity=10, price=100.0,
        date=datetime(2024, 1, 2, 10, 30),
    )
    data.update(overrides)
    return schemas.TradeCreate(**data)


def _position(db, account, symbol):
    return (
        db.query(models.Portfolio)
        .filter(models.Portfolio.account_id == account.id, models.Portfolio.symbol == symbol)
        .first()
    )


class TestTradeCrud:

    def test_create_recalculates_position(self, db_session, account):
        trade = TradeService.create_trade(db_session, "local", _payload(account))

        assert trade.id is not None
        assert trade.symbol == "AAPL"
        assert trade.user_id == "local"
        position = _position(db_session, account, "AAPL")
        assert (position.quantity, position.average_price) == (10, 100.0)

    def test_create_in_foreign_account_is_not_found(self, db_session, make_account):
        foreign = make_account("Theirs", user_id="someone-else")
        with pytest.raises(ResourceNotFoundError):
            TradeService.create_trade(db_session, "local", _payload(foreign))
        assert db_session.query(models.Trade).count() == 0

    def test_option_fields_filled_from_occ_symbol(self, db_session, account):
        trade = TradeService.create_trade(db_session, "local", _payload(
            account, symbol="SPY240315P00450000", type="SELL_TO_OPEN", quantity=1, price=4.2,
            instrument_type="Option",
        ))

        assert trade.option_type == "Put"
        assert trade.strike_price == 450.0
        assert trade.expiration_date == datetime(2024, 3, 15)
        assert trade.underlying_symbol == "SPY"
        assert trade.contract_multiplier == 100
        assert trade.is_opening_trade is True
        assert trade.spread_type == "Single"

    def test_option_without_contract_details_is_rejected(self, db_session, account):
        with pytest.raises(ValidationError) as exc:
            TradeService.create_trade(db_session, "local", _payload(account, symbol="SPY", instrument_type="Option"))
        assert exc.value.status_code == 400
        assert db_session.query(models.Trade).count() == 0

    def test_update_recalculates_old_and_new_symbol(self, db_session, account):
        trade = TradeService.create_trade(db_session, "local", _payload(account))

        updated = TradeService.update_trade(
            db_session, "local", trade.id, schemas.TradeUpdate(symbol="msft", price=300.0)
        )

        assert (updated.symbol, updated.price, updated.quantity) == ("MSFT", 300.0, 10)
        assert _position(db_session, account, "AAPL") is None
        assert _position(db_session, account, "MSFT").average_price == 300.0

    def test_delete_removes_position(self, db_session, account):
        trade = TradeService.create_trade(db_session, "local", _payload(account))
        TradeService.delete_trade(db_session, "local", trade.id)

        assert db_session.query(models.Trade).count() == 0
        assert _position(db_session, account, "AAPL") is None

    def test_other_users_trade_is_not_found(self, db_session, account, add_trade):
        trade = add_trade("AAPL", "BUY", 1, 100.0, "2024-01-02", user_id="someone-else")
        with pytest.raises(ResourceNotFoundError):
            TradeService.get_trade(db_session, "local", trade.id)

    def test_list_filters(self, db_session, make_account, account, add_trade):
        other = make_account("IRA")
        add_trade("AAPL", "BUY", 1, 100.0, "2024-01-02")
        add_trade("MSFT", "BUY", 1, 300.0, "2024-01-05")
        add_trade("AAPL", "BUY", 1, 101.0, "2024-02-01", account_id=other.id)

        assert len(TradeService.list_trades(db_session, "local")) == 3
        assert len(TradeService.list_trades(db_session, "local", account_id=other.id)) == 1
        assert [t.symbol for t in TradeService.list_trades(db_session, "local", symbol="aapl")] == ["AAPL", "AAPL"]
        # Day range is inclusive on both ends
        in_range = TradeService.list_trades(db_session, "local", start=date(2024, 1, 2), end=date(2024, 1, 5))
        assert [t.symbol for t in in_range] == ["AAPL", "MSFT"]


class TestSymbolSummary:

    def test_fifo_numbers(self, db_session, account, add_trade):
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02", fee=1.0)
        add_trade("AAPL", "BUY", 10, 110.0, "2024-01-03")
        add_trade("AAPL", "SELL", 15, 120.0, "2024-01-04", fee=1.5)

        summary = TradeService.get_symbol_summary(db_session, "local", "aapl")

        assert (summary.buy_trades, summary.sell_trades) == (2, 1)
        assert summary.total_bought == 20
        assert summary.average_buy_price == 105.0
        assert summary.current_quantity == pytest.approx(5)
        assert summary.cost_basis == 550.0
        # proceeds 1798.50 - cost (1001 + 550)
        assert summary.realized_pnl == 247.5
        assert summary.realized_pnl_percent == pytest.approx(15.96)
        assert summary.total_fees == 2.5
        assert summary.first_trade_date == date(2024, 1, 2)

    def test_accounts_do_not_offset(self, db_session, make_account, account, add_trade):
        other = make_account("IRA")
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02")
        add_trade("AAPL", "SELL", 10, 90.0, "2024-01-03", account_id=other.id)

        summary = TradeService.get_symbol_summary(db_session, "local", "AAPL")
        # The IRA sale has nothing to match against and carries zero cost basis
        assert summary.current_quantity == 10
        assert summary.realized_pnl == 900.0

    def test_unknown_symbol(self, db_session, account):
        summary = TradeService.get_symbol_summary(db_session, "local", "NOPE")
        assert summary.total_trades == 0
        assert summary.first_trade_date is None


class TestTimeAnalysis:

    @pytest.fixture
    def history(self, add_trade):
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-30")
        add_trade("AAPL", "SELL", 5, 110.0, "2024-02-01")   # +50
        add_trade("AAPL", "SELL", 5, 90.0, "2024-02-12")    # -50

    def test_months_and_weeks_newest_first(self, db_session, account, history):
        analysis = TradeService.get_time_analysis(db_session, "local")

        assert [m.period for m in analysis.monthly] == ["2024-02", "2024-01"]
        february = analysis.monthly[0]
        assert (february.start_date, february.end_date) == (date(2024, 2, 1), date(2024, 2, 29))
        assert (february.total_trades, february.realized_pnl, february.win_rate) == (2, 0.0, 50.0)
        assert analysis.monthly[1].total_volume == 1000.0

        assert [w.period for w in analysis.weekly] == ["2024-W07", "2024-W05"]
        assert analysis.weekly[1].start_date == date(2024, 1, 29)
        assert analysis.weekly[1].realized_pnl == 50.0

    def test_range_keeps_earlier_cost_basis(self, db_session, account, history):
        analysis = TradeService.get_time_analysis(db_session, "local", start=date(2024, 2, 1))

        assert [m.period for m in analysis.monthly] == ["2024-02"]
        assert analysis.monthly[0].buy_trades == 0
        assert [(s.symbol, s.pnl, s.trade_count) for s in analysis.monthly[0].symbols] == [("AAPL", 0.0, 2)]

    def test_empty(self, db_session, account):
        analysis = TradeService.get_time_analysis(db_session, "local")
        assert analysis.monthly == [] and analysis.weekly == []


class TestBulkMaintenance:

    def test_remove_duplicates_keeps_first_row(self, db_session, make_account, account, add_trade):
        other = make_account("IRA")
        first = add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02")
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02")
        add_trade("AAPL", "BUY", 10, 100.0004, "2024-01-02")
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02T15:45:00")
        add_trade("AAPL", "BUY", 5, 100.0, "2024-01-03")
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02", account_id=other.id)

        result = TradeService.find_and_remove_duplicates(db_session, "local")

        assert result.duplicates_found == result.duplicates_removed == 3
        assert result.affected_symbols == ["AAPL"]
        assert result.details == ["AAPL BUY 10 @ $100.00 on 2024-01-02: removed 3 of 4"]
        remaining = db_session.query(models.Trade).filter(models.Trade.account_id == account.id).all()
        assert sorted(t.id for t in remaining)[0] == first.id
        assert len(remaining) == 2
        assert db_session.query(models.Trade).filter(models.Trade.account_id == other.id).count() == 1
        assert _position(db_session, account, "AAPL").quantity == 15

    def test_no_duplicates(self, db_session, account, add_trade):
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02")
        add_trade("AAPL", "SELL", 10, 100.0, "2024-01-02")
        result = TradeService.find_and_remove_duplicates(db_session, "local", account.id)
        assert result.duplicates_removed == 0
        assert result.details == []

    def test_delete_all_trades_for_account(self, db_session, make_account, account, add_trade):
        add_trade("AAPL", "BUY", 10, 100.0, "2024-01-02")
        add_trade("MSFT", "BUY", 1, 300.0, "2024-01-02")
        PortfolioService.recalculate(db_session, "local", account.id)

        result = TradeService.delete_all_trades_for_account(db_session, "local", account.id)

        assert (result.trades_deleted, result.positions_deleted) == (2, 2)
        assert db_session.query(models.Trade).count() == 0

        foreign = make_account("Theirs", user_id="someone-else")
        with pytest.raises(ResourceNotFoundError):
            TradeService.delete_all_trades_for_account(db_session, "local", foreign.id)
