from __future__ import annotations

import os
import tempfile
from datetime import date
from pathlib import Path

# The module-level engine in database.py is built at import time; point it at
# a throwaway file before any test module imports it.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="finance-analyzer-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'app.db'}"
os.environ["MODEL_PATH"] = str(_TMP_DIR / "vendor_classifier.pkl")

import openpyxl
import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, make_engine
from statements import BankStatement, ImportedTransaction, StatementAccount


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def write_handelsbanken_xlsx(
    path: Path,
    rows,
    account_header: str = "Allkonto 123 456 789",
    clearing_header: str = "Clearingnummer 6789",
) -> Path:
    """Write a workbook laid out like the Handelsbanken export.

    ``rows`` are (date, vendor, amount, saldo) tuples written from row 10
    onward in columns B-E.
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.cell(row=1, column=1, value="Kontoutdrag")
    if account_header is not None:
        ws.cell(row=4, column=1, value=account_header)
    if clearing_header is not None:
        ws.cell(row=6, column=2, value=clearing_header)
    for col, title in enumerate(["Reskontradatum", "Transaktionsdatum", "Text", "Belopp", "Saldo"], start=1):
        ws.cell(row=9, column=col, value=title)
    for offset, (txn_date, vendor, amount, saldo) in enumerate(rows):
        excel_row = 10 + offset
        ws.cell(row=excel_row, column=1, value=txn_date)
        ws.cell(row=excel_row, column=2, value=txn_date)
        ws.cell(row=excel_row, column=3, value=vendor)
        ws.cell(row=excel_row, column=4, value=amount)
        ws.cell(row=excel_row, column=5, value=saldo)
    wb.save(path)
    return path


@pytest.fixture
def handelsbanken_file(tmp_path):
    def _make(rows, name="statement.xlsx", **kwargs):
        return write_handelsbanken_xlsx(tmp_path / name, rows, **kwargs)
    return _make


@pytest.fixture
def account():
    return StatementAccount(clearing_number="6789", account_number="123 456 789", name="Allkonto")


@pytest.fixture
def make_statement(account):
    def _make(rows, statement_account=None):
        return BankStatement(
            account=statement_account or account,
            transactions=[
                ImportedTransaction(
                    transaction_date=txn_date,
                    amount=amount,
                    vendor_name=vendor,
                    balance=balance,
                )
                for txn_date, vendor, amount, balance in rows
            ],
            source="test",
        )
    return _make


@pytest.fixture
def may_statement(make_statement):
    """Oldest first, as the parser hands it over."""
    return make_statement([
        (date(2024, 4, 30), "Arbetsgivaren AB", 3_000_000, 3_100_000),
        (date(2024, 5, 2), "ICA KVANTUM", -45_050, 3_054_950),
        (date(2024, 5, 3), "SL ACCESS", -97_000, 2_957_950),
        (date(2024, 5, 10), "ICA KVANTUM", -12_000, 2_945_950),
        (date(2024, 5, 25), "Arbetsgivaren AB", 3_000_000, 5_945_950),
        (date(2024, 5, 28), "Swish Anna", 25_000, 5_970_950),
        (date(2024, 6, 1), "Hyresvärden", -900_000, 5_070_950),
    ])
