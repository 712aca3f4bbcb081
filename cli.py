"""
cli.py
------

Command line front end: import statements, manage categories and print the
same balances and monthly breakdowns the dashboard shows.

Usage:

    finance-analyzer init-db
    finance-analyzer import statements/*.xlsx [--dry-run]
    finance-analyzer categories add Groceries
    finance-analyzer categorize-vendor "ICA KVANTUM" Groceries
    finance-analyzer month 2024 5 [--account 1]
    finance-analyzer dashboard
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from sqlalchemy.orm import Session

import classifier
import config
import database
import repository
from dashboard import format_amount
from logging_config import configure_logging
from statements import PARSERS, StatementAccount, StatementParseError, load_statement

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _category_id(db: Session, name: str) -> Optional[int]:
    if name.lower() == "none":
        return None
    category = repository.get_category_by_name(db, name)
    if category is None:
        raise LookupError(f"No category named '{name}'")
    return category.id


def cmd_init_db(db: Session, args: argparse.Namespace) -> None:
    print(f"Database ready at {config.DATABASE_URL}")


def cmd_import(db: Session, args: argparse.Namespace) -> None:
    account = None
    if args.account_number:
        account = StatementAccount(
            clearing_number=args.clearing_number or "",
            account_number=args.account_number,
            name=args.account_name or args.account_number,
        )

    for path in args.files:
        statement = load_statement(path, fmt=args.format, account=account)
        acct = statement.account
        print(f"Account: {acct.name} ({acct.clearing_number} {acct.account_number})")
        if args.dry_run:
            for t in statement.transactions:
                saldo = format_amount(t.balance) if t.balance is not None else ""
                print(f"  {t.transaction_date:%Y-%m-%d}  {t.vendor_name:<30}  {format_amount(t.amount):>16}  {saldo:>16}")
            print(f"{len(statement.transactions)} transactions (dry run, nothing stored)")
            continue
        result = repository.import_statement(db, statement)
        print(f"{Path(path).name}: {result.inserted} imported, {result.skipped} already present, "
              f"{result.new_vendors} new vendors")


def cmd_accounts(db: Session, args: argparse.Namespace) -> None:
    if args.rename:
        account_id, name = args.rename
        repository.rename_account(db, int(account_id), name)
    balances = repository.get_account_balances(db)
    if not balances:
        print("No accounts found. Import some transactions first.")
    for b in balances:
        print(f"{b.account_id:>4}  {b.account_name:<30}  {format_amount(b.balance):>16}")


def cmd_categories(db: Session, args: argparse.Namespace) -> None:
    if args.action != "list" and not args.name:
        raise ValueError(f"'categories {args.action}' needs a category name")
    if args.action == "add":
        repository.create_category(db, args.name)
    elif args.action == "delete":
        repository.delete_category(db, _category_id(db, args.name))
    for c in repository.list_categories(db):
        print(f"{c.id:>4}  {c.name}")


def cmd_vendors(db: Session, args: argparse.Namespace) -> None:
    for v in repository.list_vendors(db, uncategorized_only=args.uncategorized):
        category = v.category.name if v.category else "None"
        print(f"{v.id:>4}  {v.display_name:<30}  {category}")


def cmd_categorize_vendor(db: Session, args: argparse.Namespace) -> None:
    vendor = repository.get_vendor_by_name(db, args.vendor)
    if vendor is None:
        raise LookupError(f"No vendor named '{args.vendor}'")
    updated = repository.set_vendor_category(db, vendor.id, _category_id(db, args.category))
    print(f"{vendor.display_name} -> {args.category} ({updated} transactions updated)")


def cmd_categorize_transaction(db: Session, args: argparse.Namespace) -> None:
    txn = repository.set_transaction_category(db, args.id, _category_id(db, args.category))
    print(f"Transaction {txn.id} -> {args.category}")


def cmd_transactions(db: Session, args: argparse.Namespace) -> None:
    category_ids = [_category_id(db, name) for name in args.category or []]
    if args.uncategorized:
        category_ids.append(None)
    vendor_ids = []
    for name in args.vendor or []:
        vendor = repository.get_vendor_by_name(db, name)
        if vendor is None:
            raise LookupError(f"No vendor named '{name}'")
        vendor_ids.append(vendor.id)

    for t in repository.list_transactions(db, category_ids, vendor_ids, args.account):
        category = t.category.name if t.category else "None"
        print(f"{t.id:>6}  {t.transaction_date:%Y-%m-%d}  {t.vendor.display_name:<30}  "
              f"{format_amount(t.amount):>16}  {category}")


def cmd_delete_transactions(db: Session, args: argparse.Namespace) -> None:
    deleted = repository.delete_transactions(db, args.ids)
    print(f"Deleted {len(deleted)} transactions")


def cmd_month(db: Session, args: argparse.Namespace) -> None:
    for title, totals in (
        ("Costs", repository.get_category_spending_for_month(db, args.year, args.month, args.account)),
        ("Income", repository.get_category_income_for_month(db, args.year, args.month, args.account)),
    ):
        print(f"{title} {args.year}-{args.month:02d}")
        if not totals:
            print(f"  No {title.lower()} for this month.")
        for t in totals:
            print(f"  {t.category_name:<30}  {format_amount(t.total):>16}")
        print(f"  {'Total':<30}  {format_amount(sum(t.total for t in totals)):>16}")


def cmd_train(db: Session, args: argparse.Namespace) -> None:
    classifier.train_and_save(db, args.model_output)
    print(f"Model saved to {args.model_output}")


def cmd_suggest(db: Session, args: argparse.Namespace) -> None:
    model = classifier.load_model(args.model)
    suggestions = classifier.suggest_vendor_categories(db, model, top_n=args.top)
    if not suggestions:
        print("Every vendor has a category.")
        return
    for s in suggestions:
        print(f"{s.vendor_name:<30}  {s.category_name:<20}  {s.confidence:.2f}")
    if args.apply:
        applied = classifier.apply_suggestions(db, suggestions, args.min_confidence)
        print(f"Categorized {applied} vendors")


def cmd_dashboard(db: Session, args: argparse.Namespace) -> None:
    from streamlit.web import cli as stcli

    sys.argv = ["streamlit", "run", str(Path(__file__).with_name("app.py"))]
    sys.exit(stcli.main())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="finance-analyzer", description="Personal finance statement analyzer")
    parser.add_argument("--log-level", type=str.upper, default=None, choices=LOG_LEVELS,
                        help="Console log level (default from LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create the database tables")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("import", help="Import bank statement files")
    p.add_argument("files", nargs="+", type=Path)
    p.add_argument("--format", choices=sorted(PARSERS), default=None,
                   help="Statement layout (default: handelsbanken for .xlsx, generic otherwise)")
    p.add_argument("--account-name")
    p.add_argument("--account-number", help="Account for generic exports that carry no header")
    p.add_argument("--clearing-number")
    p.add_argument("--dry-run", action="store_true", help="Show parsed rows without storing them")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("accounts", help="List accounts with their balances")
    p.add_argument("--rename", nargs=2, metavar=("ID", "NAME"))
    p.set_defaults(func=cmd_accounts)

    p = sub.add_parser("categories", help="List, add or delete categories")
    p.add_argument("action", choices=["list", "add", "delete"], nargs="?", default="list")
    p.add_argument("name", nargs="?")
    p.set_defaults(func=cmd_categories)

    p = sub.add_parser("vendors", help="List vendors and their categories")
    p.add_argument("--uncategorized", action="store_true")
    p.set_defaults(func=cmd_vendors)

    p = sub.add_parser("categorize-vendor", help="Set a vendor's category ('none' clears it)")
    p.add_argument("vendor")
    p.add_argument("category")
    p.set_defaults(func=cmd_categorize_vendor)

    p = sub.add_parser("categorize-transaction", help="Override one transaction's category")
    p.add_argument("id", type=int)
    p.add_argument("category")
    p.set_defaults(func=cmd_categorize_transaction)

    p = sub.add_parser("transactions", help="List transactions")
    p.add_argument("--category", action="append")
    p.add_argument("--uncategorized", action="store_true")
    p.add_argument("--vendor", action="append")
    p.add_argument("--account", type=int, action="append")
    p.set_defaults(func=cmd_transactions)

    p = sub.add_parser("delete-transactions", help="Delete transactions by id")
    p.add_argument("ids", nargs="+", type=int)
    p.set_defaults(func=cmd_delete_transactions)

    p = sub.add_parser("month", help="Costs and income per category for one month")
    p.add_argument("year", type=int)
    p.add_argument("month", type=int)
    p.add_argument("--account", type=int, action="append", help="Limit to account id (repeatable)")
    p.set_defaults(func=cmd_month)

    p = sub.add_parser("train", help="Train the vendor category model")
    p.add_argument("--model-output", type=Path, default=config.MODEL_PATH)
    p.set_defaults(func=cmd_train)

    p = sub.add_parser("suggest", help="Suggest categories for uncategorized vendors")
    p.add_argument("--model", type=Path, default=config.MODEL_PATH)
    p.add_argument("--top", type=int, default=None)
    p.add_argument("--apply", action="store_true")
    p.add_argument("--min-confidence", type=float, default=0.6)
    p.set_defaults(func=cmd_suggest)

    p = sub.add_parser("dashboard", help="Open the streamlit dashboard")
    p.set_defaults(func=cmd_dashboard)

    return parser


def main(argv: Optional[List[str]] = None, session_factory=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if session_factory is None:
        database.init_db()
        session_factory = database.SessionLocal

    db = session_factory()
    try:
        args.func(db, args)
    except (StatementParseError, LookupError, ValueError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
