# dashboard.py: frames and plotly figures behind the dashboard tab

from typing import Iterable, List, Optional

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from sqlalchemy.orm import Session

import config
import repository
from repository import UNCATEGORIZED, AccountBalance, CategoryTotal

FRAME_COLUMNS = ["ID", "Date", "Description", "Amount", "Balance", "Category", "AccountID", "Account"]


def format_amount(minor: int, currency: str = config.CURRENCY) -> str:
    return f"{minor / 100:,.2f} {currency}"


def load_frame(db: Session, account_ids: Optional[Iterable[int]] = None) -> pd.DataFrame:
    """
    Transactions as a DataFrame, amounts in major units.
    """
    if account_ids is not None:
        account_ids = list(account_ids)
        if not account_ids:
            return pd.DataFrame(columns=FRAME_COLUMNS)

    transactions = repository.list_transactions(db, account_ids=account_ids)
    if not transactions:
        return pd.DataFrame(columns=FRAME_COLUMNS)

    data = [{
        "ID": t.id,
        "Date": t.transaction_date,
        "Description": t.vendor.display_name,
        "Amount": t.amount / 100,
        "Balance": t.balance / 100 if t.balance is not None else None,
        "Category": t.category.name if t.category else UNCATEGORIZED,
        "AccountID": t.account_id,
        "Account": t.account.display_name,
    } for t in transactions]

    df = pd.DataFrame(data, columns=FRAME_COLUMNS)
    df["Date"] = pd.to_datetime(df["Date"])
    return df


def _prep(df):
    """
    Prepares the dataframe for dashboarding.
    """
    if df.empty:
        return df

    df = df.copy()
    df['Date'] = pd.to_datetime(df['Date'])
    df['Month'] = df['Date'].dt.to_period('M').astype(str)

    # Ensure Amount is numeric
    df['Amount'] = pd.to_numeric(df['Amount'], errors='coerce').fillna(0)

    # Helper columns
    df['IsExpense'] = df['Amount'] < 0
    df['AbsExpense'] = df['Amount'].where(df['Amount'] < 0, 0).abs()
    df['Income'] = df['Amount'].where(df['Amount'] > 0, 0)

    if "Category" not in df.columns:
        df["Category"] = UNCATEGORIZED
    else:
        df["Category"] = df["Category"].fillna(UNCATEGORIZED).replace("", UNCATEGORIZED)

    return df


def monthly_totals(df: pd.DataFrame) -> pd.DataFrame:
    """Income, expense and net per month (expense as a positive number)."""
    if df.empty:
        return pd.DataFrame(columns=["Month", "Income", "Expense", "Net"])
    df = _prep(df)
    monthly = df.groupby('Month').agg(Income=('Income', 'sum'), Expense=('AbsExpense', 'sum')).reset_index()
    monthly['Net'] = monthly['Income'] - monthly['Expense']
    return monthly.sort_values('Month').reset_index(drop=True)


def balance_history(df: pd.DataFrame) -> pd.DataFrame:
    """
    End-of-day balance per account.

    Uses the bank's balance column where the statement had one and the
    running sum of amounts otherwise. Accounts sharing a display name get
    their id appended so each keeps its own line.
    """
    if df.empty:
        return pd.DataFrame(columns=["Date", "AccountID", "Account", "Balance"])

    df = df.sort_values(["AccountID", "Date", "ID"]).copy()
    df["Running"] = df.groupby("AccountID")["Amount"].cumsum()
    if "Balance" in df.columns:
        df["Running"] = df["Balance"].astype(float).fillna(df["Running"])

    daily = (
        df.groupby(["AccountID", "Date"], sort=False)
        .agg(Account=("Account", "last"), Balance=("Running", "last"))
        .reset_index()
    )
    shared = daily.groupby("Account")["AccountID"].transform("nunique") > 1
    daily.loc[shared, "Account"] = daily.loc[shared, "Account"] + " #" + daily.loc[shared, "AccountID"].astype(str)
    return daily[["Date", "AccountID", "Account", "Balance"]].sort_values(["AccountID", "Date"]).reset_index(drop=True)


def totals_frame(totals: List[CategoryTotal]) -> pd.DataFrame:
    return pd.DataFrame(
        [{"Category": t.category_name, "Amount": t.total / 100} for t in totals],
        columns=["Category", "Amount"],
    )


def balances_frame(balances: List[AccountBalance]) -> pd.DataFrame:
    return pd.DataFrame(
        [{"Account": b.account_name, "Balance": b.balance / 100} for b in balances],
        columns=["Account", "Balance"],
    )


def category_breakdown(totals: List[CategoryTotal], title: str, color: str = '#FF5252'):
    """
    Horizontal bar chart of one month's totals per category.
    """
    by_cat = totals_frame(totals).sort_values('Amount')
    fig = px.bar(by_cat, x='Amount', y='Category', orientation='h', title=title)
    fig.update_traces(marker_color=color)
    fig.update_layout(height=max(250, 40 * len(by_cat) + 120))
    return fig


def income_vs_expense_monthly(df):
    """
    Bar chart of Income vs Expenses per month.
    """
    monthly = monthly_totals(df)

    fig = go.Figure()
    fig.add_trace(go.Bar(x=monthly['Month'], y=monthly['Income'], name='Income', marker_color='#4CAF50'))
    fig.add_trace(go.Bar(x=monthly['Month'], y=monthly['Expense'], name='Expenses', marker_color='#FF5252'))

    fig.update_layout(barmode='group', title="Income vs Expenses Trend", height=400)
    return fig


def balance_trend(df):
    """
    Line chart of each account's balance over time.
    """
    history = balance_history(df)
    fig = px.line(history, x='Date', y='Balance', color='Account', title="Account Balances")
    fig.update_layout(height=350)
    return fig
