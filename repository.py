"""Data access for accounts, vendors, categories and transactions.

Every function takes the SQLAlchemy session first and commits its own
work, so callers (the CLI, the streamlit app) can treat each call as one
unit. Lookups that find nothing raise ``LookupError``; invalid input raises
``ValueError``.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from database import Account, Category, Transaction, Vendor
from statements import BankStatement, StatementAccount

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class ImportResult:
    account_id: int
    inserted: int
    skipped: int
    new_vendors: int


@dataclass(frozen=True)
class TransactionRecord:
    """Detached copy of a transaction row, enough to put it back."""
    id: int
    transaction_date: date
    amount: int
    balance: Optional[int]
    vendor_id: int
    account_id: int
    category_id: Optional[int]


@dataclass(frozen=True)
class AccountBalance:
    account_id: int
    account_name: str
    balance: int


@dataclass(frozen=True)
class CategoryTotal:
    category_id: Optional[int]
    category_name: str
    total: int


def _record(txn: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=txn.id,
        transaction_date=txn.transaction_date,
        amount=txn.amount,
        balance=txn.balance,
        vendor_id=txn.vendor_id,
        account_id=txn.account_id,
        category_id=txn.category_id,
    )


def _get(db: Session, model, obj_id: int):
    obj = db.get(model, obj_id)
    if obj is None:
        raise LookupError(f"{model.__name__} {obj_id} does not exist")
    return obj


def _check_category(db: Session, category_id: Optional[int]) -> None:
    if category_id is not None:
        _get(db, Category, category_id)


# --- Import ---

def get_or_create_account(db: Session, account: StatementAccount) -> Account:
    existing = db.query(Account).filter(
        Account.clearing_number == account.clearing_number,
        Account.account_number == account.account_number,
    ).first()
    if existing:
        return existing
    created = Account(
        clearing_number=account.clearing_number,
        account_number=account.account_number,
        name=account.name,
    )
    db.add(created)
    db.flush()
    logger.info("Created account %s (%s %s)", created.name, created.clearing_number, created.account_number)
    return created


def import_statement(db: Session, statement: BankStatement) -> ImportResult:
    """Store a parsed statement.

    Vendors are looked up by their statement name and created on first
    sight. New transactions inherit the vendor's category. Rows already in
    the database (same account, date, vendor, amount and balance) are
    skipped. Duplicates are counted, so two identical purchases on one day
    are both kept.
    """
    try:
        account = get_or_create_account(db, statement.account)

        vendors = {v.name: v for v in db.query(Vendor).all()}
        new_vendors = 0
        for imported in statement.transactions:
            if imported.vendor_name not in vendors:
                vendor = Vendor(name=imported.vendor_name)
                db.add(vendor)
                vendors[imported.vendor_name] = vendor
                new_vendors += 1
        db.flush()

        existing = Counter(
            (t.transaction_date, t.vendor_id, t.amount, t.balance)
            for t in db.query(Transaction).filter(Transaction.account_id == account.id)
        )

        inserted = 0
        skipped = 0
        for imported in statement.transactions:
            vendor = vendors[imported.vendor_name]
            key = (imported.transaction_date, vendor.id, imported.amount, imported.balance)
            if existing[key] > 0:
                existing[key] -= 1
                skipped += 1
                continue
            db.add(Transaction(
                transaction_date=imported.transaction_date,
                amount=imported.amount,
                balance=imported.balance,
                vendor_id=vendor.id,
                account_id=account.id,
                category_id=vendor.category_id,
            ))
            inserted += 1
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Imported %s into account %s: %d new, %d already present, %d new vendors",
        statement.source or "statement", account.id, inserted, skipped, new_vendors,
    )
    return ImportResult(account_id=account.id, inserted=inserted, skipped=skipped, new_vendors=new_vendors)


# --- Categories ---

def list_categories(db: Session) -> List[Category]:
    return db.query(Category).order_by(Category.name).all()


def get_category_by_name(db: Session, name: str) -> Optional[Category]:
    return db.query(Category).filter(Category.name == name.strip()).first()


def create_category(db: Session, name: str) -> Category:
    name = (name or "").strip()
    if not name:
        raise ValueError("Category name must not be empty")
    if get_category_by_name(db, name):
        raise ValueError(f"Category '{name}' already exists")
    category = Category(name=name)
    db.add(category)
    db.commit()
    logger.info("Created category %s", name)
    return category


def delete_category(db: Session, category_id: int) -> None:
    """Delete a category; its vendors and transactions become uncategorized."""
    category = _get(db, Category, category_id)
    db.query(Vendor).filter(Vendor.category_id == category_id).update(
        {Vendor.category_id: None}, synchronize_session=False
    )
    db.query(Transaction).filter(Transaction.category_id == category_id).update(
        {Transaction.category_id: None}, synchronize_session=False
    )
    db.delete(category)
    db.commit()
    db.expire_all()
    logger.info("Deleted category %s", category_id)


# --- Vendors ---

def list_vendors(db: Session, uncategorized_only: bool = False) -> List[Vendor]:
    query = db.query(Vendor)
    if uncategorized_only:
        query = query.filter(Vendor.category_id.is_(None))
    return query.order_by(Vendor.name).all()


def get_vendor_by_name(db: Session, name: str) -> Optional[Vendor]:
    return db.query(Vendor).filter(
        or_(Vendor.name == name, Vendor.user_defined_name == name)
    ).first()


def rename_vendor(db: Session, vendor_id: int, user_defined_name: Optional[str]) -> Vendor:
    vendor = _get(db, Vendor, vendor_id)
    vendor.user_defined_name = (user_defined_name or "").strip() or None
    db.commit()
    return vendor


def apply_vendor_category_to_transactions(db: Session, vendor_id: int) -> int:
    """Give the vendor's category to its transactions that have none."""
    vendor = _get(db, Vendor, vendor_id)
    if vendor.category_id is None:
        return 0
    updated = db.query(Transaction).filter(
        Transaction.vendor_id == vendor_id,
        Transaction.category_id.is_(None),
    ).update({Transaction.category_id: vendor.category_id}, synchronize_session=False)
    db.commit()
    db.expire_all()
    return updated


def set_vendor_category(db: Session, vendor_id: int, category_id: Optional[int]) -> int:
    """Set a vendor's default category and propagate it.

    Returns the number of transactions that picked up the category.
    Transactions that already carry a category keep it.
    """
    vendor = _get(db, Vendor, vendor_id)
    _check_category(db, category_id)
    vendor.category_id = category_id
    db.commit()
    updated = apply_vendor_category_to_transactions(db, vendor_id)
    logger.info("Vendor %s -> category %s (%d transactions updated)", vendor.name, category_id, updated)
    return updated


# --- Accounts ---

def list_accounts(db: Session) -> List[Account]:
    return db.query(Account).order_by(Account.id).all()


def rename_account(db: Session, account_id: int, user_defined_name: Optional[str]) -> Account:
    account = _get(db, Account, account_id)
    account.user_defined_name = (user_defined_name or "").strip() or None
    db.commit()
    return account


# --- Transactions ---

def get_transaction(db: Session, transaction_id: int) -> Optional[Transaction]:
    return db.get(Transaction, transaction_id)


def insert_transaction(db: Session, transaction: Transaction) -> int:
    """Insert a transaction, defaulting its category to the vendor's."""
    if transaction.category_id is None:
        vendor = db.get(Vendor, transaction.vendor_id)
        if vendor is not None:
            transaction.category_id = vendor.category_id
    db.add(transaction)
    db.commit()
    return transaction.id


def set_transaction_category(db: Session, transaction_id: int, category_id: Optional[int]) -> Transaction:
    txn = _get(db, Transaction, transaction_id)
    _check_category(db, category_id)
    txn.category_id = category_id
    db.commit()
    return txn


def list_transactions(
    db: Session,
    category_ids: Optional[Iterable[Optional[int]]] = None,
    vendor_ids: Optional[Iterable[int]] = None,
    account_ids: Optional[Iterable[int]] = None,
) -> List[Transaction]:
    """Transactions newest first, optionally filtered.

    ``None`` or an empty collection means "no filter". ``None`` inside
    ``category_ids`` selects uncategorized rows.
    """
    query = db.query(Transaction)
    category_ids = set(category_ids or ())
    if category_ids:
        wanted = [c for c in category_ids if c is not None]
        conditions = []
        if wanted:
            conditions.append(Transaction.category_id.in_(wanted))
        if None in category_ids:
            conditions.append(Transaction.category_id.is_(None))
        query = query.filter(or_(*conditions))
    vendor_ids = set(vendor_ids or ())
    if vendor_ids:
        query = query.filter(Transaction.vendor_id.in_(vendor_ids))
    account_ids = set(account_ids or ())
    if account_ids:
        query = query.filter(Transaction.account_id.in_(account_ids))
    return query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()).all()


def delete_transactions(db: Session, transaction_ids: Iterable[int]) -> List[TransactionRecord]:
    """Delete transactions and return what was removed so it can be restored."""
    ids = set(transaction_ids)
    if not ids:
        return []
    rows = db.query(Transaction).filter(Transaction.id.in_(ids)).order_by(Transaction.id).all()
    deleted = [_record(t) for t in rows]
    for txn in rows:
        db.delete(txn)
    db.commit()
    logger.info("Deleted %d transactions", len(deleted))
    return deleted


def restore_transactions(db: Session, records: Sequence[TransactionRecord]) -> int:
    """Put deleted transactions back with their original ids.

    A category deleted in the meantime leaves the row uncategorized. Rows
    whose vendor or account is gone are not restored.
    """
    restored = 0
    try:
        for record in records:
            if db.get(Transaction, record.id) is not None:
                continue
            if db.get(Vendor, record.vendor_id) is None or db.get(Account, record.account_id) is None:
                logger.warning("Not restoring transaction %s: its vendor or account no longer exists", record.id)
                continue
            category_id = record.category_id
            if category_id is not None and db.get(Category, category_id) is None:
                category_id = None
            db.add(Transaction(
                id=record.id,
                transaction_date=record.transaction_date,
                amount=record.amount,
                balance=record.balance,
                vendor_id=record.vendor_id,
                account_id=record.account_id,
                category_id=category_id,
            ))
            restored += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Restored %d transactions", restored)
    return restored


# --- Aggregations ---

def get_account_balances(db: Session, account_ids: Optional[Iterable[int]] = None) -> List[AccountBalance]:
    """Latest settled balance per account.

    The bank's own balance on the most recent transaction wins; when the
    statement had no balance column the amounts are summed instead.
    """
    ranked = db.query(
        Transaction.account_id.label("account_id"),
        Transaction.balance.label("balance"),
        func.row_number().over(
            partition_by=Transaction.account_id,
            order_by=(Transaction.transaction_date.desc(), Transaction.id.desc()),
        ).label("recency"),
    ).subquery()
    totals = (
        db.query(Transaction.account_id.label("account_id"), func.sum(Transaction.amount).label("total"))
        .group_by(Transaction.account_id)
        .subquery()
    )

    query = (
        db.query(Account, ranked.c.balance, totals.c.total)
        .outerjoin(ranked, and_(ranked.c.account_id == Account.id, ranked.c.recency == 1))
        .outerjoin(totals, totals.c.account_id == Account.id)
    )
    if account_ids is not None:
        ids = list(account_ids)
        if not ids:
            return []
        query = query.filter(Account.id.in_(ids))

    return [
        AccountBalance(account.id, account.display_name, latest if latest is not None else int(total or 0))
        for account, latest, total in query.order_by(Account.id).all()
    ]


def _month_bounds(year: int, month: int):
    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1-12, got {month}")
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


def _category_totals_for_month(
    db: Session,
    year: int,
    month: int,
    account_ids: Optional[Iterable[int]],
    expenses: bool,
) -> List[CategoryTotal]:
    start, end = _month_bounds(year, month)
    conditions = [Transaction.transaction_date >= start, Transaction.transaction_date < end]
    conditions.append(Transaction.amount < 0 if expenses else Transaction.amount > 0)
    if account_ids is not None:
        ids = list(account_ids)
        if not ids:
            return []
        conditions.append(Transaction.account_id.in_(ids))

    total = func.sum(Transaction.amount)
    rows = (
        db.query(Transaction.category_id, Category.name, total)
        .outerjoin(Category, Category.id == Transaction.category_id)
        .filter(and_(*conditions))
        .group_by(Transaction.category_id, Category.name)
        .order_by(total.asc() if expenses else total.desc(), Category.name)
        .all()
    )
    return [
        CategoryTotal(category_id, name or UNCATEGORIZED, abs(int(amount)))
        for category_id, name, amount in rows
    ]


def get_category_spending_for_month(
    db: Session, year: int, month: int, account_ids: Optional[Iterable[int]] = None
) -> List[CategoryTotal]:
    """Expenses per category for one month, as positive totals, largest first."""
    return _category_totals_for_month(db, year, month, account_ids, expenses=True)


def get_category_income_for_month(
    db: Session, year: int, month: int, account_ids: Optional[Iterable[int]] = None
) -> List[CategoryTotal]:
    return _category_totals_for_month(db, year, month, account_ids, expenses=False)
