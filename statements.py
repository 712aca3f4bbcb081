"""
statements.py
-------------
Read bank statement exports into normalized transaction records.

Two layouts are understood:

* the Handelsbanken ``.xlsx`` export, where the account header sits in
  fixed cells above a transaction table, and
* a generic CSV/Excel export whose columns are recognised by their header
  names (the same pattern matching the importer has always used).

Every amount is converted to minor units (value * 100) with ``Decimal`` so
nothing is lost to float rounding.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import openpyxl
import pandas as pd

logger = logging.getLogger(__name__)

# Patterns used to identify columns.
DESCRIPTION_PATTERNS = ["description", "details", "vendor", "name", "memo", "text", "merchant", "transaction"]
DATE_PATTERNS = ["transaction date", "date", "datum", "posted", "post date", "value date"]
AMOUNT_PATTERNS = ["amount", "belopp", "amt"]
BALANCE_PATTERNS = ["balance", "saldo"]

# Handelsbanken sheet layout (0-based row/column indices)
HB_ACCOUNT_ROW, HB_ACCOUNT_COL = 3, 0
HB_CLEARING_ROW, HB_CLEARING_COL = 5, 1
HB_FIRST_TRANSACTION_ROW = 9
HB_DATE_COL, HB_VENDOR_COL, HB_AMOUNT_COL, HB_BALANCE_COL = 1, 2, 3, 4


class StatementParseError(ValueError):
    """Raised when a statement file cannot be turned into transactions."""


@dataclass(frozen=True)
class ImportedTransaction:
    transaction_date: date
    amount: int  # minor units
    vendor_name: str
    balance: Optional[int] = None  # minor units


@dataclass(frozen=True)
class StatementAccount:
    clearing_number: str
    account_number: str
    name: str


@dataclass
class BankStatement:
    account: StatementAccount
    transactions: List[ImportedTransaction] = field(default_factory=list)
    source: str = ""


def to_minor_units(value) -> int:
    """Convert a cell value such as ``"-1,234.50"`` or ``-1234.5`` to ``-123450``."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not an amount: {value!r}")
    if isinstance(value, (int, Decimal)):
        number = Decimal(value)
    elif isinstance(value, float):
        if value != value:  # NaN
            raise ValueError("not an amount: NaN")
        number = Decimal(str(value))
    else:
        text = str(value).strip()
        negative = text.startswith("(") and text.endswith(")")
        text = text.strip("()")
        text = re.sub(r"[\s,$€£]", "", text)
        text = re.sub(r"(?i)(sek|kr)$", "", text)
        if not text:
            raise ValueError(f"not an amount: {value!r}")
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"not an amount: {value!r}") from None
        if negative:
            number = -number
    return int((number * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"not a yyyy-mm-dd date: {value!r}") from None


def chronological(transactions: List[ImportedTransaction]) -> List[ImportedTransaction]:
    """Banks usually export newest first; store oldest first.

    Same-day rows keep their relative order so the last one carries the
    settled balance for that day.
    """
    if len(transactions) > 1 and transactions[0].transaction_date > transactions[-1].transaction_date:
        return list(reversed(transactions))
    return list(transactions)


# --- Handelsbanken ---

def _cell(row: tuple, index: int):
    return row[index] if index < len(row) else None


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_handelsbanken_xlsx(path: str | Path) -> BankStatement:
    """Read a Handelsbanken export; the account comes from the sheet header.

    Completely blank rows in the transaction table are skipped wherever they
    appear, as a spreadsheet row iterator would, so a stray empty line between
    transactions does not abort the import.
    """
    path = Path(path)
    try:
        workbook = openpyxl.load_workbook(path, data_only=True)
    except Exception as exc:
        raise StatementParseError(f"{path.name}: could not open workbook ({exc})") from exc

    try:
        sheet = workbook.worksheets[0]
        # Explicit origin: openpyxl otherwise starts at the first non-empty cell
        rows = list(sheet.iter_rows(min_row=1, min_col=1, values_only=True))
    finally:
        workbook.close()

    def header_cell(row_idx: int, col_idx: int) -> str:
        value = _cell(rows[row_idx], col_idx) if row_idx < len(rows) else None
        if _is_blank(value):
            raise StatementParseError(
                f"{path.name}: row {row_idx + 1}: missing account header cell"
            )
        return str(value).strip()

    account_info = header_cell(HB_ACCOUNT_ROW, HB_ACCOUNT_COL).split()
    clearing_info = header_cell(HB_CLEARING_ROW, HB_CLEARING_COL).split()
    if len(account_info) < 2 or len(clearing_info) < 2:
        raise StatementParseError(f"{path.name}: unrecognised account header")

    account = StatementAccount(
        clearing_number=clearing_info[1],
        account_number=" ".join(account_info[1:]),
        name=account_info[0],
    )

    transactions = []
    for row_idx in range(HB_FIRST_TRANSACTION_ROW, len(rows)):
        row = rows[row_idx]
        if all(_is_blank(v) for v in row):
            continue
        try:
            balance_cell = _cell(row, HB_BALANCE_COL)
            transactions.append(ImportedTransaction(
                transaction_date=to_date(_cell(row, HB_DATE_COL)),
                amount=to_minor_units(_cell(row, HB_AMOUNT_COL)),
                vendor_name=str(_cell(row, HB_VENDOR_COL) or "").strip(),
                balance=None if _is_blank(balance_cell) else to_minor_units(balance_cell),
            ))
        except ValueError as exc:
            raise StatementParseError(f"{path.name}: row {row_idx + 1}: {exc}") from exc

    logger.info("Parsed %d transactions for account %s from %s", len(transactions), account.name, path.name)
    return BankStatement(account=account, transactions=chronological(transactions), source=path.name)


# --- Generic exports ---

def infer_column(df: pd.DataFrame, patterns: list[str]) -> Optional[str]:
    for pattern in patterns:
        for col in df.columns:
            if pattern in str(col).lower():
                return col
    return None


def _csv_separator(path: Path) -> str:
    # Swedish exports use ';' since ',' is the decimal mark there
    with open(path, encoding="utf-8-sig") as f:
        header = f.readline()
    return ";" if header.count(";") > header.count(",") else ","


def _read_table(path: Path) -> Tuple[pd.DataFrame, bool]:
    """Read the export as text cells; the flag says whether ',' is the decimal mark."""
    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            sep = _csv_separator(path)
            df = pd.read_csv(path, sep=sep, dtype=str, keep_default_na=False, encoding="utf-8-sig")
            return df, sep == ";"
        if suffix in (".xls", ".xlsx"):
            return pd.read_excel(path, dtype=str, keep_default_na=False), False
    except Exception as exc:
        raise StatementParseError(f"{path.name}: could not read file ({exc})") from exc
    raise StatementParseError(f"{path.name}: unsupported file type '{path.suffix}'")


def parse_generic_statement(path: str | Path, account: Optional[StatementAccount] = None) -> BankStatement:
    path = Path(path)
    df, decimal_comma = _read_table(path)
    if account is None:
        account = StatementAccount(clearing_number="", account_number=path.stem, name=path.stem)

    if df.empty:
        return BankStatement(account=account, transactions=[], source=path.name)

    date_col = infer_column(df, DATE_PATTERNS)
    desc_col = infer_column(df, [p for p in DESCRIPTION_PATTERNS if p != "transaction"]) \
        or infer_column(df, DESCRIPTION_PATTERNS)
    if desc_col == date_col:
        desc_col = None
    if not date_col or not desc_col:
        raise StatementParseError(f"{path.name}: could not find date and description columns")

    debit_col = None
    credit_col = None
    for c in df.columns:
        lc = str(c).lower()
        if "debit" in lc or "withdrawal" in lc:
            debit_col = c
        if "credit" in lc or "deposit" in lc:
            credit_col = c
    amount_col = infer_column(df, AMOUNT_PATTERNS)
    balance_col = infer_column(df, BALANCE_PATTERNS)
    if amount_col is None and (debit_col is None or credit_col is None):
        raise StatementParseError(f"{path.name}: could not find an amount column")

    def money(value) -> int:
        if decimal_comma:
            value = str(value).replace(".", "").replace(",", ".")
        return to_minor_units(value)

    transactions = []
    for idx, row in enumerate(df.to_dict("records")):
        row_number = idx + 2  # header is row 1
        if all(_is_blank(v) for v in row.values()):
            continue
        try:
            if amount_col is not None:
                amount = money(row[amount_col])
            else:
                debit = row[debit_col]
                credit = row[credit_col]
                amount = (0 if _is_blank(credit) else money(credit)) \
                    - (0 if _is_blank(debit) else abs(money(debit)))
            balance_cell = row[balance_col] if balance_col is not None else None
            transactions.append(ImportedTransaction(
                transaction_date=_any_date(row[date_col]),
                amount=amount,
                vendor_name=str(row[desc_col]).strip(),
                balance=None if _is_blank(balance_cell) else money(balance_cell),
            ))
        except (ValueError, TypeError) as exc:
            raise StatementParseError(f"{path.name}: row {row_number}: {exc}") from exc

    logger.info("Parsed %d transactions from %s", len(transactions), path.name)
    return BankStatement(account=account, transactions=chronological(transactions), source=path.name)


def _any_date(value) -> date:
    if isinstance(value, str) and re.match(r"^\d{4}-\d{2}-\d{2}", value.strip()):
        return to_date(value)
    if _is_blank(value):
        raise ValueError("missing date")
    parsed = pd.to_datetime(value)
    if pd.isna(parsed):
        raise ValueError(f"not a date: {value!r}")
    return parsed.date()


PARSERS: Dict[str, Callable[..., BankStatement]] = {
    "handelsbanken": parse_handelsbanken_xlsx,
    "generic": parse_generic_statement,
}


def load_statement(
    path: str | Path,
    fmt: Optional[str] = None,
    account: Optional[StatementAccount] = None,
) -> BankStatement:
    """Parse ``path`` with the named format, or pick one from the file suffix.

    ``account`` is only for exports without an account header; passing one
    with the Handelsbanken layout is an error.
    """
    path = Path(path)
    if fmt is None:
        fmt = "handelsbanken" if path.suffix.lower() == ".xlsx" and account is None else "generic"
    if fmt not in PARSERS:
        raise StatementParseError(f"unknown statement format '{fmt}' (choose from {', '.join(PARSERS)})")
    if fmt == "generic":
        return parse_generic_statement(path, account)
    if account is not None:
        raise StatementParseError(f"{path.name}: the {fmt} layout reads its account from the file header")
    return PARSERS[fmt](path)
