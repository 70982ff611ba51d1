"""
Tests for ImporterService: format detection, account checks and post-import work
"""

import pytest

from tradejournal import models
from tradejournal.services.importer_service import (
    ACCOUNT_NOT_FOUND,
    ImporterService,
    decode_upload,
    detect_format,
)

FIDELITY = (
    "Brokerage\n\nAccount History for Individual X12345678\n\n"
    "Run Date,Action,Symbol,Description,Type,Quantity,Price ($),Commission ($),Fees ($),"
    "Accrued Interest ($),Amount ($),Settlement Date\n"
    "01/02/2024,YOU BOUGHT APPLE INC (AAPL) (Cash),AAPL,APPLE INC,Cash,10,100.00,,,,-1000.00,01/04/2024\n"
    "01/05/2024,DIVIDEND RECEIVED APPLE INC (AAPL) (Cash),AAPL,APPLE INC,Cash,,,,,,2.40,\n"
)

GENERIC = (
    "Symbol,Type,Quantity,Price,Date\n"
    "MSFT,BUY,4,300,2024-02-01\n"
    "MSFT,SELL,1,320,2024-02-02\n"
)

VERTICAL = (
    "Symbol,Type,Quantity,Price,Date\n"
    "SPY240315C00150000,BUY_TO_OPEN,1,3.00,2024-03-01\n"
    "SPY240315C00155000,SELL_TO_OPEN,1,5.00,2024-03-01\n"
)


class TestDetection:

    def test_fidelity_header_after_preamble(self):
        assert detect_format(FIDELITY) == "fidelity"

    def test_generic_header_must_be_first_row(self):
        assert detect_format(GENERIC) == "generic"
        assert detect_format("note\n" + GENERIC) is None

    def test_unknown(self):
        assert detect_format("a,b,c\n1,2,3\n") is None
        assert detect_format("") is None

    def test_decode_upload(self):
        assert decode_upload(b"") is None
        assert decode_upload(b"  \n") is None
        assert decode_upload(b"\xff\xfe\xfa") is None
        assert decode_upload("\ufeffSymbol,Quantity,Price\n".encode("utf-8")).startswith("Symbol")

    def test_available_formats(self):
        assert [f.name for f in ImporterService.available_formats()] == ["Fidelity", "Generic"]


class TestImportText:

    def test_foreign_account_touches_nothing(self, db_session, make_account):
        foreign = make_account("Theirs", user_id="someone-else")

        result = ImporterService.import_text(db_session, GENERIC, "local", foreign.id)

        assert not result.success
        assert result.errors == [ACCOUNT_NOT_FOUND]
        assert db_session.query(models.Trade).count() == 0

    def test_generic_import_updates_positions(self, db_session, account):
        result = ImporterService.import_text(db_session, GENERIC, "local", account.id)

        assert result.success
        assert result.imported_count == 2
        position = db_session.query(models.Portfolio).one()
        assert (position.symbol, position.quantity, position.average_price) == ("MSFT", 3, 300.0)

    def test_fidelity_import_with_dividend(self, db_session, account):
        result = ImporterService.import_text(db_session, FIDELITY, "local", account.id)

        assert (result.format, result.imported_count, result.dividends_imported_count) == ("Fidelity", 1, 1)
        assert db_session.query(models.Dividend).one().amount == 2.40

    def test_reimport_is_all_skipped(self, db_session, account):
        ImporterService.import_text(db_session, GENERIC, "local", account.id)
        again = ImporterService.import_text(db_session, GENERIC, "local", account.id)

        assert again.success
        assert again.imported_count == 0
        assert again.skipped_count == 2
        assert db_session.query(models.Trade).count() == 2

    def test_format_hint_overrides_detection(self, db_session, account):
        result = ImporterService.import_text(db_session, GENERIC, "local", account.id, format_hint="Fidelity")
        assert not result.success
        assert db_session.query(models.Trade).count() == 0

    def test_unknown_format_hint(self, db_session, account):
        result = ImporterService.import_text(db_session, GENERIC, "local", account.id, format_hint="schwab")
        assert not result.success
        assert "schwab" in result.errors[0]

    def test_unrecognized_content(self, db_session, account):
        result = ImporterService.import_text(db_session, "a,b,c\n1,2,3\n", "local", account.id)
        assert not result.success
        assert result.errors[0].startswith("Unrecognized CSV format")

    def test_spreads_are_detected_after_import(self, db_session, account):
        result = ImporterService.import_text(db_session, VERTICAL, "local", account.id)

        assert result.imported_count == 2
        assert result.spreads_detected == 1
        assert result.to_dict()["spreads_detected"] == 1
        group_ids = {t.spread_group_id for t in db_session.query(models.Trade)}
        assert len(group_ids) == 1 and None not in group_ids


class TestImportFile:

    def test_bytes_are_decoded(self, db_session, account):
        result = ImporterService.import_file(db_session, GENERIC.encode("utf-8-sig"), "local", account.id)
        assert result.imported_count == 2

    @pytest.mark.parametrize("raw", [b"", b"\xff\xfe\xfa"])
    def test_unreadable_bytes(self, db_session, account, raw):
        result = ImporterService.import_file(db_session, raw, "local", account.id)
        assert not result.success
        assert "UTF-8" in result.errors[0]

    def test_account_checked_before_decoding(self, db_session):
        result = ImporterService.import_file(db_session, b"\xff", "local", 999)
        assert result.errors == [ACCOUNT_NOT_FOUND]
