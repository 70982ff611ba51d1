"""
ImporterService: runs one broker CSV through the right importer and brings
positions and spread groups up to date afterwards.

Order of work for an upload:
1. account ownership check (nothing is touched for a foreign account)
2. decode + format detection
3. importer stages rows, one commit
4. position recalculation (only if rows were imported)
5. spread detection over the account's ungrouped option legs
"""
import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from .. import schemas
from ..importers import fidelity_importer, generic_importer
from ..importers.base import ImportResult, read_csv_rows
from . import spread_detector
from .accounts_service import AccountsService
from .portfolio_service import PortfolioService

logger = logging.getLogger(__name__)

ACCOUNT_NOT_FOUND = "Account not found or access denied"
# Fidelity exports carry a few preamble lines before the header
DETECTION_ROWS = 15

IMPORTERS: Dict[str, Callable[..., ImportResult]] = {
    "fidelity": fidelity_importer.import_fidelity_csv,
    "generic": generic_importer.import_generic_csv,
}


def detect_format(text: str) -> Optional[str]:
    """Return the importer key for the content, or None when nothing matches."""
    rows = read_csv_rows(text)[:DETECTION_ROWS]
    if any(fidelity_importer.can_parse(row) for row in rows):
        return "fidelity"
    if rows and generic_importer.can_parse(rows[0]):
        return "generic"
    return None


def decode_upload(raw: bytes) -> Optional[str]:
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return None
    return text if text.strip() else None


class ImporterService:

    @staticmethod
    def available_formats() -> List[schemas.ImportFormat]:
        return [
            schemas.ImportFormat(name=fidelity_importer.FORMAT_NAME, description=fidelity_importer.FORMAT_DESCRIPTION),
            schemas.ImportFormat(name=generic_importer.FORMAT_NAME, description=generic_importer.FORMAT_DESCRIPTION),
        ]

    @staticmethod
    def import_text(db: Session, text: str, user_id: str, account_id: int, format_hint: Optional[str] = None) -> ImportResult:
        if AccountsService.find_account(db, user_id, account_id) is None:
            return ImportResult.failure(ACCOUNT_NOT_FOUND)

        key = (format_hint or "").strip().lower() or detect_format(text)
        if key is None:
            return ImportResult.failure("Unrecognized CSV format. Supported formats: Fidelity, Generic.")
        importer = IMPORTERS.get(key)
        if importer is None:
            return ImportResult.failure(f"Unknown import format '{format_hint}'")

        try:
            result = importer(db, text, user_id, account_id)
            if not result.success:
                db.rollback()
                return result
            db.commit()
        except Exception:
            db.rollback()
            raise

        if result.imported_count or result.dividends_imported_count:
            PortfolioService.recalculate(db, user_id, account_id)
        result.spreads_detected = len(spread_detector.detect_and_group(db, user_id, account_id))

        logger.info(
            f"Imported {result.format} file into account {account_id}: "
            f"{result.imported_count} trades, {result.dividends_imported_count} dividends, "
            f"{result.skipped_count} skipped, {result.error_count} errors, "
            f"{result.spreads_detected} spreads"
        )
        return result

    @staticmethod
    def import_file(db: Session, raw: bytes, user_id: str, account_id: int, format_hint: Optional[str] = None) -> ImportResult:
        """Import uploaded bytes. Failures come back as ImportResult(success=False)."""
        if AccountsService.find_account(db, user_id, account_id) is None:
            return ImportResult.failure(ACCOUNT_NOT_FOUND)
        text = decode_upload(raw)
        if text is None:
            return ImportResult.failure("File is empty or not valid UTF-8 text")
        return ImporterService.import_text(db, text, user_id, account_id, format_hint)
