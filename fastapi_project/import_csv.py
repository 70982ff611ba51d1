"""
Import a broker CSV export into a journal account from the command line.

Examples:
    python import_csv.py History_for_Account.csv --account-id 1
    python import_csv.py trades.csv --account-name "Roth IRA" --format generic --user alice

Runs the same pipeline as POST /importer/upload: duplicate-safe import,
position recalculation and spread detection.
"""
import argparse
import json
import sys
from pathlib import Path

from tradejournal import models, schemas
from tradejournal.database import Base, SessionLocal, engine
from tradejournal.dependencies import LOCAL_USER_ID
from tradejournal.services.accounts_service import AccountsService
from tradejournal.services.importer_service import IMPORTERS, ImporterService
from tradejournal.utils.error_handling import AppError


def _resolve_account(db, user_id: str, args) -> models.Account:
    if args.account_id is not None:
        return AccountsService.get_account(db, user_id, args.account_id)
    for account in AccountsService.list_accounts(db, user_id):
        if account.name == args.account_name:
            return account
    print(f"Creating account '{args.account_name}'")
    return AccountsService.create_account(db, user_id, schemas.AccountCreate(name=args.account_name))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Import a broker CSV into the trading journal")
    parser.add_argument("path", type=Path, help="CSV file to import")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--account-id", type=int, help="Existing account id")
    target.add_argument("--account-name", help="Account name; created if missing")
    parser.add_argument("--format", choices=sorted(IMPORTERS), help="Skip detection and force a format")
    parser.add_argument("--user", default=LOCAL_USER_ID, help="Owner user id (default: %(default)s)")
    args = parser.parse_args(argv)

    if not args.path.is_file():
        print(f"File not found: {args.path}", file=sys.stderr)
        return 2

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        account = _resolve_account(db, args.user, args)
        result = ImporterService.import_file(db, args.path.read_bytes(), args.user, account.id, format_hint=args.format)
    except AppError as e:
        print(e.message, file=sys.stderr)
        return 1
    finally:
        db.close()

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
