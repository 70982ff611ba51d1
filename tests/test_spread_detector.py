"""
Tests for options spread detection
"""

from datetime import date, datetime
from itertools import count

import pytest

from tradejournal.services.spread_detector import (
    OptionLeg,
    SpreadType,
    annotate_notes,
    build_patches,
    custom_label,
    detect_and_group,
    detect_spreads,
    find_verticals,
    list_spread_groups,
    strategy_name_from_notes,
)

TRADE_DAY = date(2024, 3, 1)
EXP = date(2024, 3, 15)
LATER_EXP = date(2024, 4, 19)

_ids = count(1)


def leg(option_type, strike, is_buy, price, quantity=1, expiration=EXP, underlying="SPY", trade_date=TRADE_DAY, notes=None):
    return OptionLeg(
        trade_id=next(_ids),
        trade_date=trade_date,
        underlying=underlying,
        expiration=expiration,
        option_type=option_type,
        strike=strike,
        is_buy=is_buy,
        is_opening=True,
        quantity=quantity,
        price=price,
        notes=notes,
    )


def only(detected):
    assert len(detected) == 1
    return detected[0]


class TestPasses:

    def test_credit_call_spread(self):
        """Buy 150C @3, sell 155C @5: net = 5*100 - 3*100 = 200 credit."""
        spread = only(detect_spreads([leg("Call", 150, True, 3.00), leg("Call", 155, False, 5.00)]))

        assert spread.spread_type == SpreadType.CREDIT_SPREAD
        assert spread.name == "Credit Call Spread"
        assert spread.net_premium == pytest.approx(200.0)
        assert spread.is_credit

    def test_debit_put_spread(self):
        spread = only(detect_spreads([leg("Put", 400, True, 6.00), leg("Put", 390, False, 2.50)]))
        assert spread.spread_type == SpreadType.DEBIT_SPREAD
        assert spread.name == "Debit Put Spread"
        assert spread.net_premium == pytest.approx(-350.0)

    def test_iron_condor(self):
        legs = [
            leg("Put", 380, True, 1.00),
            leg("Put", 390, False, 2.00),
            leg("Call", 420, False, 2.10),
            leg("Call", 430, True, 0.90),
        ]
        spread = only(detect_spreads(legs))
        assert spread.spread_type == SpreadType.IRON_CONDOR
        # (2.00 + 2.10 - 1.00 - 0.90) * 100
        assert spread.net_premium == pytest.approx(220.0)

    @pytest.mark.parametrize("put_strike, expected_type, expected_name", [
        (400, SpreadType.STRADDLE, "Long Straddle"),
        (390, SpreadType.STRANGLE, "Long Strangle"),
    ])
    def test_straddle_and_strangle(self, put_strike, expected_type, expected_name):
        spread = only(detect_spreads([leg("Call", 400, True, 5.0), leg("Put", put_strike, True, 4.0)]))
        assert (spread.spread_type, spread.name) == (expected_type, expected_name)

    def test_short_strangle(self):
        spread = only(detect_spreads([leg("Call", 410, False, 3.0), leg("Put", 390, False, 3.0)]))
        assert spread.name == "Short Strangle"

    def test_butterfly(self):
        legs = [leg("Call", 95, True, 7.0), leg("Call", 100, False, 4.0, quantity=2), leg("Call", 105, True, 2.0)]
        spread = only(detect_spreads(legs))
        assert (spread.spread_type, spread.name) == (SpreadType.BUTTERFLY, "Call Butterfly")

    def test_calendar(self):
        spread = only(detect_spreads([
            leg("Call", 400, False, 3.0, expiration=EXP),
            leg("Call", 400, True, 6.0, expiration=LATER_EXP),
        ]))
        assert (spread.spread_type, spread.name) == (SpreadType.CALENDAR, "Call Calendar")

    def test_diagonal(self):
        spread = only(detect_spreads([
            leg("Put", 390, False, 3.0, expiration=EXP),
            leg("Put", 380, True, 4.0, expiration=LATER_EXP),
        ]))
        assert (spread.spread_type, spread.name) == (SpreadType.DIAGONAL, "Put Diagonal")

    def test_unequal_quantities_fall_through_to_custom(self):
        legs = [leg("Call", 400, True, 5.0, quantity=1), leg("Call", 410, False, 3.0, quantity=2)]
        assert find_verticals(legs) == []
        spread = only(detect_spreads(legs))
        assert (spread.spread_type, spread.name) == (SpreadType.CUSTOM, "Ratio Spread 1x2")

    def test_custom_labels(self):
        jade = [leg("Put", 380, False, 3.0), leg("Call", 420, False, 2.0), leg("Call", 425, True, 1.0)]
        twisted = [leg("Call", 420, False, 2.0), leg("Put", 380, False, 3.0), leg("Put", 375, True, 1.0)]
        assert custom_label(jade) == "Jade Lizard"
        assert custom_label(twisted) == "Twisted Sister"
        assert custom_label(jade + [leg("Call", 430, True, 0.5), leg("Put", 370, True, 0.5)]) == "Custom (5-leg)"

    def test_single_legs_and_different_underlyings_are_left_alone(self):
        legs = [leg("Call", 150, True, 3.0, underlying="AAPL"), leg("Call", 155, False, 5.0, underlying="MSFT")]
        assert detect_spreads(legs) == []

    def test_each_leg_claimed_once(self):
        legs = [
            leg("Put", 380, True, 1.00),
            leg("Put", 390, False, 2.00),
            leg("Call", 420, False, 2.10),
            leg("Call", 430, True, 0.90),
            leg("Call", 150, True, 3.0, underlying="AAPL"),
            leg("Call", 155, False, 5.0, underlying="AAPL"),
        ]
        detected = detect_spreads(legs)
        claimed = [l.trade_id for d in detected for l in d.legs]
        assert len(claimed) == len(set(claimed)) == 6
        assert {d.spread_type for d in detected} == {SpreadType.IRON_CONDOR, SpreadType.CREDIT_SPREAD}


class TestPatches:

    def test_legs_numbered_by_strike(self):
        legs = [leg("Call", 155, False, 5.0), leg("Call", 150, True, 3.0)]
        patches = build_patches(detect_spreads(legs), new_group_id=lambda: "g-1")

        assert [p.spread_leg_number for p in patches] == [1, 2]
        assert [p.trade_id for p in patches] == [legs[1].trade_id, legs[0].trade_id]
        assert {p.spread_group_id for p in patches} == {"g-1"}
        assert patches[0].notes == "Strategy: Credit Call Spread | Net Credit: $200.00"

    def test_notes_annotated_once(self):
        once = annotate_notes("Imported from Fidelity: YOU SOLD", "Credit Call Spread", 200.0)
        assert once == "Imported from Fidelity: YOU SOLD | Strategy: Credit Call Spread | Net Credit: $200.00"
        assert annotate_notes(once, "Debit Call Spread", -50.0) == once
        assert annotate_notes(None, "Long Straddle", -900.0) == "Strategy: Long Straddle | Net Debit: $900.00"

    def test_strategy_name_from_notes(self):
        assert strategy_name_from_notes("x | Strategy: Iron Condor | Net Credit: $220.00") == "Iron Condor"
        assert strategy_name_from_notes("plain note") is None


class TestDetectAndGroup:

    def _option(self, add_trade, type, strike, price, option_type="Call", expiration="2024-03-15", **extra):
        return add_trade(
            f"SPY240315{option_type[0]}{int(strike * 1000):08d}", type, 1, price, "2024-03-01",
            instrument_type="Option", option_type=option_type, strike_price=strike,
            expiration_date=datetime.fromisoformat(expiration), underlying_symbol="SPY",
            contract_multiplier=100, is_opening_trade=type.endswith("OPEN"), **extra,
        )

    def test_groups_and_persists(self, db_session, account, add_trade):
        buy = self._option(add_trade, "BUY_TO_OPEN", 150, 3.0)
        sell = self._option(add_trade, "SELL_TO_OPEN", 155, 5.0)

        detected = detect_and_group(db_session, "local", account.id)

        assert len(detected) == 1
        db_session.refresh(buy)
        db_session.refresh(sell)
        assert buy.spread_group_id == sell.spread_group_id is not None
        assert (buy.spread_type, buy.spread_leg_number) == ("CreditSpread", 1)
        assert sell.spread_leg_number == 2
        assert "Strategy: Credit Call Spread" in sell.notes

    def test_rerun_keeps_existing_groups(self, db_session, account, add_trade):
        legs = [
            self._option(add_trade, "BUY_TO_OPEN", 380, 1.0, "Put"),
            self._option(add_trade, "SELL_TO_OPEN", 390, 2.0, "Put"),
            self._option(add_trade, "SELL_TO_OPEN", 420, 2.1),
            self._option(add_trade, "BUY_TO_OPEN", 430, 0.9),
        ]
        detect_and_group(db_session, "local", account.id)
        group_ids = {t.spread_group_id for t in legs}
        notes = [t.notes for t in legs]

        assert detect_and_group(db_session, "local", account.id) == []
        for t in legs:
            db_session.refresh(t)
        assert {t.spread_group_id for t in legs} == group_ids
        assert len(group_ids) == 1
        assert [t.notes for t in legs] == notes
        assert legs[0].spread_type == "IronCondor"

    def test_expirations_and_stock_are_ignored(self, db_session, account, add_trade):
        self._option(add_trade, "SELL_TO_OPEN", 155, 5.0)
        self._option(add_trade, "EXPIRED", 150, 0.0)
        add_trade("SPY", "BUY", 10, 500.0, "2024-03-01")

        assert detect_and_group(db_session, "local", account.id) == []

    def test_list_spread_groups(self, db_session, account, add_trade):
        self._option(add_trade, "BUY_TO_OPEN", 150, 3.0)
        self._option(add_trade, "SELL_TO_OPEN", 155, 5.0)
        detect_and_group(db_session, "local", account.id)

        groups = list_spread_groups(db_session, "local")

        assert len(groups) == 1
        group = groups[0]
        assert group["strategy_name"] == "Credit Call Spread"
        assert group["net_premium"] == 200.0
        assert group["leg_count"] == 2
        assert group["is_open"] is True
        assert [l["strike_price"] for l in group["legs"]] == [150.0, 155.0]
