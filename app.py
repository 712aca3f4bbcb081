import logging
import sys
import tempfile
from datetime import date
from pathlib import Path

import pandas as pd
import streamlit as st

# Add current directory to path
sys.path.append(str(Path(__file__).parent))

import classifier
import config
import repository
from dashboard import (
    _prep,
    balance_trend,
    balances_frame,
    category_breakdown,
    format_amount,
    income_vs_expense_monthly,
    load_frame,
)
from database import SessionLocal, init_db
from logging_config import configure_logging
from statements import StatementParseError, load_statement

logger = logging.getLogger(__name__)

# --- Configuration ---
st.set_page_config(page_title="Finance Analyzer", layout="wide", page_icon="💰")


@st.cache_resource
def _setup_logging():
    configure_logging()
    return True


_setup_logging()

# --- Database Session ---
init_db()

if "db" not in st.session_state:
    st.session_state.db = SessionLocal()


def get_db():
    return st.session_state.db


def month_label(year: int, month: int) -> str:
    return date(year, month, 1).strftime("%B %Y")


def shift_month(year: int, month: int, delta: int):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


if "month" not in st.session_state:
    today = date.today()
    st.session_state["month"] = (today.year, today.month)
if "pending_statement" not in st.session_state:
    st.session_state["pending_statement"] = None

st.title("💰 Finance Analyzer")

tab1, tab2, tab3, tab4 = st.tabs(["📊 Dashboard", "📥 Import", "🏷️ Categories", "💳 Transactions"])

with tab1:
    db = get_db()
    accounts = repository.list_accounts(db)

    if not accounts:
        st.info("No accounts found. Import some transactions first.")
    else:
        # Account Selection
        account_labels = {a.id: a.display_name for a in accounts}
        selected_ids = st.multiselect(
            "Accounts",
            options=list(account_labels),
            default=list(account_labels),
            format_func=lambda account_id: account_labels[account_id],
        )

        # Account Balances
        st.subheader("Account Balances")
        balances = repository.get_account_balances(db, selected_ids)
        if not balances:
            st.caption("No accounts selected or no data available.")
        else:
            cols = st.columns(min(len(balances), 4))
            for i, balance in enumerate(balances):
                cols[i % len(cols)].metric(balance.account_name, format_amount(balance.balance))
            st.dataframe(balances_frame(balances), use_container_width=True, hide_index=True)

        # Month navigation
        year, month = st.session_state["month"]
        prev_col, label_col, next_col = st.columns([1, 3, 1])
        if prev_col.button("◀ Previous", key="prev_month"):
            st.session_state["month"] = shift_month(year, month, -1)
            st.rerun()
        label_col.markdown(f"### {month_label(year, month)}")
        if next_col.button("Next ▶", key="next_month"):
            st.session_state["month"] = shift_month(year, month, 1)
            st.rerun()

        spending = repository.get_category_spending_for_month(db, year, month, selected_ids)
        income = repository.get_category_income_for_month(db, year, month, selected_ids)

        col1, col2 = st.columns(2)
        with col1:
            st.subheader("Monthly Costs")
            if not spending:
                st.caption("No expenses for this month.")
            else:
                st.metric("Total spent", format_amount(sum(t.total for t in spending)))
                st.plotly_chart(category_breakdown(spending, "Spending by Category"), use_container_width=True)
        with col2:
            st.subheader("Monthly Income")
            if not income:
                st.caption("No income for this month.")
            else:
                st.metric("Total income", format_amount(sum(t.total for t in income)))
                st.plotly_chart(
                    category_breakdown(income, "Income by Category", color='#4CAF50'),
                    use_container_width=True,
                )

        df_prep = _prep(load_frame(db, selected_ids))
        if not df_prep.empty:
            st.subheader("📈 Trends")
            st.plotly_chart(income_vs_expense_monthly(df_prep), use_container_width=True)
            st.plotly_chart(balance_trend(df_prep), use_container_width=True)

with tab2:
    st.header("📥 Import Bank Statement")
    uploaded_file = st.file_uploader(
        "Upload a statement",
        type=["xlsx", "xls", "csv"],
        key="statement_upload",
        help="Handelsbanken .xlsx exports are read as-is; other files by their column headers.",
    )

    if uploaded_file is not None and st.button("Parse file", key="parse_statement"):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / uploaded_file.name
            path.write_bytes(uploaded_file.getbuffer())
            with st.spinner("Parsing..."):
                try:
                    st.session_state["pending_statement"] = load_statement(path)
                except StatementParseError as e:
                    logger.warning("Statement parse failed: %s", e)
                    st.session_state["pending_statement"] = None
                    st.error(f"Error: {e}")

    statement = st.session_state.get("pending_statement")
    if statement is not None:
        account = statement.account
        st.markdown(f"**Account:** {account.name} ({account.clearing_number} {account.account_number})")
        preview = pd.DataFrame([{
            "Date": t.transaction_date,
            "Vendor": t.vendor_name,
            f"Amount ({config.CURRENCY})": t.amount / 100,
            f"Saldo ({config.CURRENCY})": t.balance / 100 if t.balance is not None else None,
        } for t in statement.transactions])
        st.dataframe(preview, use_container_width=True, hide_index=True)

        import_col, cancel_col = st.columns(2)
        if import_col.button("Import", type="primary", key="confirm_import"):
            result = repository.import_statement(get_db(), statement)
            st.session_state["pending_statement"] = None
            st.success(f"Imported {result.inserted} new transactions ({result.skipped} already present).")
        if cancel_col.button("Cancel", key="cancel_import"):
            st.session_state["pending_statement"] = None
            st.rerun()

with tab3:
    db = get_db()
    categories = repository.list_categories(db)
    category_names = {c.id: c.name for c in categories}

    col1, col2 = st.columns(2)
    with col1:
        st.subheader("Categories")
        with st.form("category_form", clear_on_submit=True):
            new_name = st.text_input("New category", key="new_category")
            if st.form_submit_button("Add", key="add_category"):
                try:
                    repository.create_category(db, new_name)
                    st.rerun()
                except ValueError as e:
                    st.error(str(e))

        for category in categories:
            name_col, delete_col = st.columns([4, 1])
            name_col.write(category.name)
            if delete_col.button("Delete", key=f"delete_category_{category.id}"):
                repository.delete_category(db, category.id)
                st.rerun()

    with col2:
        st.subheader("Vendors")
        options = [None] + list(category_names)
        for vendor in repository.list_vendors(db):
            current = options.index(vendor.category_id) if vendor.category_id in options else 0
            choice = st.selectbox(
                vendor.display_name,
                options=options,
                index=current,
                format_func=lambda c: "None" if c is None else category_names[c],
                # Keyed on the stored category so changes made elsewhere show up
                key=f"vendor_category_{vendor.id}_{vendor.category_id}",
            )
            if choice != vendor.category_id:
                repository.set_vendor_category(db, vendor.id, choice)
                st.rerun()

    st.divider()
    st.subheader("🧠 Suggestions")
    if config.MODEL_PATH.exists():
        model = classifier.load_model(config.MODEL_PATH)
        suggestions = classifier.suggest_vendor_categories(db, model, top_n=20)
        if suggestions:
            st.dataframe(pd.DataFrame([{
                "Vendor": s.vendor_name,
                "Suggested Category": s.category_name,
                "Confidence": s.confidence,
            } for s in suggestions]), use_container_width=True, hide_index=True)
            min_confidence = st.slider("Minimum confidence", 0.0, 1.0, 0.6, 0.05)
            if st.button("Accept suggestions"):
                applied = classifier.apply_suggestions(db, suggestions, min_confidence)
                st.success(f"Categorized {applied} vendors.")
                st.rerun()
        else:
            st.caption("Every vendor has a category.")
    if st.button("Train from categorized vendors"):
        try:
            classifier.train_and_save(db, config.MODEL_PATH)
            st.success("Model trained.")
            st.rerun()
        except ValueError as e:
            st.error(str(e))

with tab4:
    db = get_db()
    categories = repository.list_categories(db)
    category_names = {c.id: c.name for c in categories}
    vendors = repository.list_vendors(db)
    vendor_names = {v.id: v.display_name for v in vendors}

    filter_col1, filter_col2 = st.columns(2)
    category_filter = filter_col1.multiselect(
        "Categories",
        options=[None] + list(category_names),
        format_func=lambda c: "None" if c is None else category_names[c],
    )
    vendor_filter = filter_col2.multiselect(
        "Vendors", options=list(vendor_names), format_func=lambda v: vendor_names[v]
    )

    transactions = repository.list_transactions(db, category_ids=category_filter, vendor_ids=vendor_filter)
    if not transactions:
        st.info("No transactions.")
    else:
        table = pd.DataFrame([{
            "ID": t.id,
            "Date": t.transaction_date,
            "Vendor": t.vendor.display_name,
            f"Amount ({config.CURRENCY})": t.amount / 100,
            "Category": t.category.name if t.category else "None",
            "Account": t.account.display_name,
        } for t in transactions])
        st.dataframe(table, use_container_width=True, hide_index=True)

        ids = [t.id for t in transactions]
        edit_col, delete_col = st.columns(2)
        with edit_col:
            with st.form("set_transaction_category"):
                txn_id = st.selectbox("Transaction", ids, key="transaction_pick")
                cat_choice = st.selectbox(
                    "Category",
                    options=[None] + list(category_names),
                    format_func=lambda c: "None" if c is None else category_names[c],
                    key="transaction_category",
                )
                if st.form_submit_button("Set category", key="apply_transaction_category"):
                    repository.set_transaction_category(db, txn_id, cat_choice)
                    st.rerun()
        with delete_col:
            to_delete = st.multiselect("Delete transactions", ids, key="delete_pick")
            if st.button("Delete selected", disabled=not to_delete, key="delete_selected"):
                st.session_state["last_deleted"] = repository.delete_transactions(db, to_delete)
                st.rerun()

    if st.session_state.get("last_deleted"):
        if st.button(f"Undo delete ({len(st.session_state['last_deleted'])})", key="undo_delete"):
            repository.restore_transactions(db, st.session_state.pop("last_deleted"))
            st.rerun()
