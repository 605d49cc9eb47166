"""
Streamlit Frontend for the Household Ledger

The screen the family uses every day to record income, expenses, loans
and budgets for the household, the gym and the typing services business.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Explicit confirmation before anything the AI suggests is saved
3. Every save shows exactly one success or error message
4. Works offline against the last synced copy of the ledger
"""

import asyncio
from datetime import date, datetime, time, timezone

import pandas as pd
import streamlit as st

from finledger.config import get_settings, validate_all_settings
from finledger.models import (
    MAIN_CATEGORIES,
    BorrowingDraft,
    CandidateStatus,
    CompletionType,
    Currency,
    ImportRow,
    MainCategory,
    Template,
    Theme,
    TransactionDraft,
    TransactionMedium,
    TransactionType,
    User,
    suggested_tags,
)
from finledger.orchestrator import AppComponents, create_app_components
from finledger.queries import Period
from finledger.services import ConnectionStatus, LedgerStore
from finledger.validation import ValidationError


# Page configuration
st.set_page_config(
    page_title="Household Ledger",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

ENTRY_MEDIUMS = [m for m in TransactionMedium if m != TransactionMedium.TRANSFER]


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    try:
        return create_app_components(use_remote=True)
    except Exception as e:
        st.error(f"Failed to initialize: {e}")
        return create_app_components(use_remote=False)


def money(value, ledger: LedgerStore) -> str:
    return f"{ledger.settings.currency.value} {float(value):,.2f}"


def to_instant(day: date) -> datetime:
    return datetime.combine(day, time(12, 0), tzinfo=timezone.utc)


def show_validation_error(error: ValidationError) -> None:
    for issue in error.issues:
        st.error(issue.message)
        if issue.suggested_fix:
            st.caption(issue.suggested_fix)


def show_latest_notice(ledger: LedgerStore) -> None:
    """Show the outcome of the last action once."""
    notice = ledger.audit.latest_notice
    if notice is None or st.session_state.get("shown_notice") == notice.timestamp:
        return
    st.session_state.shown_notice = notice.timestamp
    if notice.is_error:
        st.toast(f"❌ {notice.message}")
    else:
        st.toast(f"✅ {notice.message}")


def main():
    """Main application entry point."""
    components = get_components()
    ledger = components.ledger
    run_async(ledger.refresh())

    if ledger.current_user is None:
        render_login_page(ledger)
        return

    st.sidebar.title("💰 Household Ledger")
    st.sidebar.markdown(f"Logged in as **{ledger.current_user.value}**")
    status = ledger.connection_status
    if status == ConnectionStatus.OFFLINE:
        st.sidebar.warning("Offline: changes are kept locally")
    elif status == ConnectionStatus.CONNECTING:
        st.sidebar.info("Connecting...")
    if ledger.last_error:
        st.sidebar.error(ledger.last_error)
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        [
            "📊 Dashboard",
            "➕ Add Transaction",
            "💬 AI Chat",
            "📥 Bulk Import",
            "🤝 Borrowings",
            "📈 Reports",
            "⚙️ Settings",
        ],
        index=0,
    )

    category_filter = st.sidebar.selectbox(
        "Business",
        options=[None] + MAIN_CATEGORIES,
        format_func=lambda c: "All" if c is None else c.value,
    )

    if st.sidebar.button("Log out"):
        ledger.logout()
        st.rerun()

    if page == "📊 Dashboard":
        render_dashboard_page(components, category_filter)
    elif page == "➕ Add Transaction":
        render_entry_page(components, category_filter)
    elif page == "💬 AI Chat":
        render_chat_page(components, category_filter)
    elif page == "📥 Bulk Import":
        render_import_page(components)
    elif page == "🤝 Borrowings":
        render_borrowings_page(components)
    elif page == "📈 Reports":
        render_reports_page(components)
    elif page == "⚙️ Settings":
        render_settings_page(components)

    show_latest_notice(ledger)


def render_login_page(ledger: LedgerStore):
    st.title("💰 Household Ledger")
    user = st.selectbox("Who is this?", options=list(User), format_func=lambda u: u.value)
    pin = st.text_input("PIN", type="password", max_chars=8)
    if st.button("Unlock", type="primary"):
        if ledger.login(user, pin):
            st.rerun()
        else:
            st.error("Incorrect PIN")


def render_dashboard_page(components: AppComponents, category_filter):
    """Balances, budgets and recent activity."""
    ledger = components.ledger
    st.title("📊 Dashboard")

    summary = components.reports.summary()
    col1, col2, col3 = st.columns(3)
    col1.metric("Total Balance", money(summary.total_balance, ledger))
    col2.metric("Cash in Hand", money(summary.cash_in_hand, ledger))
    col3.metric("Bank & Cards", money(summary.bank_total, ledger))

    budgets = components.reports.budget_status()
    if budgets:
        st.markdown("### Budgets this month")
        for projection in budgets:
            label = (
                f"{projection.category.value}: {money(projection.current, ledger)} "
                f"of {money(projection.limit, ledger)}"
            )
            st.progress(min(projection.usage_percent, 100.0) / 100, text=label)

    st.markdown("### Recent Transactions")
    if category_filter is not None:
        finance = components.reports.category_finance(category_filter)
        c1, c2, c3 = st.columns(3)
        c1.metric("Income", money(finance.total_income, ledger))
        c2.metric("Expenses", money(finance.total_expense, ledger))
        c3.metric("Profit", money(finance.profit, ledger))
        transactions = finance.transactions
    else:
        transactions = ledger.recent_transactions(50)

    if not transactions:
        st.info("No transactions yet. Use 'Add Transaction' or the AI chat to add one.")
        return

    for transaction in transactions[:50]:
        sign = "+" if transaction.type == TransactionType.INCOME else "-"
        with st.expander(
            f"{transaction.date.strftime('%d %b %Y')} · {transaction.main_category.value} · "
            f"{transaction.sub_category or transaction.payee or '-'} · "
            f"{sign}{money(transaction.amount, ledger)}"
        ):
            st.markdown(
                f"**Medium:** {transaction.medium.value}  \n"
                f"**Payee:** {transaction.payee or '-'}  \n"
                f"**Notes:** {transaction.notes or '-'}  \n"
                f"**Recorded by:** {transaction.recorded_by.value}"
            )
            if transaction.edits:
                last = transaction.edits[-1]
                st.caption(f"Edited by {last.user.value} on {last.date.strftime('%d %b %Y %H:%M')}")
            c1, c2 = st.columns(2)
            if c1.button("✏️ Edit", key=f"edit-{transaction.id}"):
                st.session_state.editing_id = transaction.id
                st.info("Open 'Add Transaction' to edit this entry.")
            if c2.button("🗑️ Delete", key=f"delete-{transaction.id}"):
                run_async(components.entry.delete(transaction.id))
                st.rerun()


def render_entry_page(components: AppComponents, category_filter):
    """Add or edit one transaction (or a transfer)."""
    ledger = components.ledger
    entry = components.entry

    editing = None
    if st.session_state.get("editing_id"):
        editing = ledger.find_transaction(st.session_state.editing_id)

    st.title("✏️ Edit Transaction" if editing else "➕ Add Transaction")

    prefill = st.session_state.get("entry_prefill")
    if editing is not None:
        prefill = entry.normalizer.draft_from_transaction(editing)

    templates = ledger.templates
    if templates and editing is None:
        names = [t.name for t in templates]
        chosen = st.selectbox("Load template", options=[""] + names)
        if chosen and st.button("Use template"):
            st.session_state.entry_prefill = entry.load_template(chosen)
            st.rerun()

    prefill = prefill or TransactionDraft()
    types = [TransactionType.EXPENSE, TransactionType.INCOME]
    if editing is None:
        types.append(TransactionType.TRANSFER)
    transaction_type = st.radio(
        "Type",
        options=types,
        index=types.index(prefill.type) if prefill.type in types else 0,
        format_func=lambda t: t.value.title(),
        horizontal=True,
    )

    amount = st.text_input("Amount *", value="" if prefill.amount is None else str(prefill.amount))
    day = st.date_input("Date", value=(prefill.date or datetime.now(timezone.utc)).date())

    draft_values = {
        "type": transaction_type,
        "amount": amount,
        "date": to_instant(day),
    }

    if transaction_type == TransactionType.TRANSFER:
        c1, c2 = st.columns(2)
        draft_values["from_medium"] = c1.selectbox("From", ENTRY_MEDIUMS, index=1, format_func=lambda m: m.value)
        draft_values["to_medium"] = c2.selectbox("To", ENTRY_MEDIUMS, index=0, format_func=lambda m: m.value)
    else:
        default_category = prefill.main_category or category_filter or MainCategory.PERSONAL
        category = st.selectbox(
            "Category",
            options=MAIN_CATEGORIES,
            index=MAIN_CATEGORIES.index(default_category),
            format_func=lambda c: c.value,
        )
        tags = suggested_tags(transaction_type, category)
        sub_category = st.text_input("Tag / Sub-category", value=prefill.sub_category or "")
        if tags:
            st.caption("Suggestions: " + ", ".join(tags))
        medium_index = ENTRY_MEDIUMS.index(prefill.medium) if prefill.medium in ENTRY_MEDIUMS else 1
        medium = st.selectbox("Medium", ENTRY_MEDIUMS, index=medium_index, format_func=lambda m: m.value)
        draft_values.update(
            main_category=category,
            sub_category=sub_category,
            medium=medium,
        )

    draft_values["payee"] = st.text_input("Payee", value=prefill.payee or "")
    draft_values["notes"] = st.text_area("Notes", value=prefill.notes or "")

    if transaction_type != TransactionType.TRANSFER and editing is None:
        save_template = st.checkbox("Save as template")
        if save_template:
            draft_values["save_as_template"] = True
            draft_values["template_name"] = st.text_input("Template name")

    draft = TransactionDraft(**draft_values)

    projection = entry.preview_budget(draft, editing=editing)
    if projection is not None:
        text = (
            f"{projection.category.value} budget: {money(projection.projected, ledger)} "
            f"of {money(projection.limit, ledger)}"
        )
        if projection.is_over_budget:
            st.warning(f"⚠️ Over budget. {text}")
        else:
            st.info(f"{text} ({money(projection.remaining, ledger)} left)")

    c1, c2 = st.columns(2)
    if c1.button("💾 Save", type="primary", disabled=ledger.is_saving):
        try:
            saved = run_async(entry.submit(draft, editing=editing, active_filter=category_filter))
        except ValidationError as e:
            show_validation_error(e)
        else:
            if saved:
                st.session_state.editing_id = None
                st.session_state.entry_prefill = None
                st.rerun()
    if c2.button("Cancel"):
        st.session_state.editing_id = None
        st.session_state.entry_prefill = None
        st.rerun()


def render_chat_page(components: AppComponents, category_filter):
    """Conversational entry with optional photo."""
    chat = components.chat
    st.title("💬 AI Chat")
    st.markdown("Describe a transaction, or attach a receipt photo.")

    history = st.session_state.setdefault("chat_history", [])
    for role, text in history:
        with st.chat_message(role):
            st.markdown(text)

    photo = st.file_uploader("Receipt photo (optional)", type=["png", "jpg", "jpeg"])
    message = st.chat_input("e.g. Paid 150 for fuel with card today")
    if message:
        history.append(("user", message))
        image = photo.getvalue() if photo else None
        with st.spinner("Thinking..."):
            completion = run_async(chat.ask(message, image=image, mime_type=photo.type if photo else None))
        history.append(("assistant", completion.message))
        st.session_state.pending_completion = (
            completion if completion.type == CompletionType.CONFIRMATION else None
        )
        st.rerun()

    completion = st.session_state.get("pending_completion")
    if completion is None or not completion.transactions:
        return

    st.markdown("### Proposed transactions")
    for candidate in completion.transactions:
        flag = {
            CandidateStatus.DUPLICATE: "⚠️ possible duplicate",
            CandidateStatus.REVIEW: "✏️ needs details",
        }.get(candidate.status, "")
        st.markdown(
            f"- {candidate.type.value if candidate.type else '?'} · "
            f"{candidate.amount if candidate.amount is not None else '?'} · "
            f"{candidate.main_category or '?'} / {candidate.sub_category or '-'} · "
            f"{candidate.payee or '-'} {flag}"
        )

    c1, c2, c3 = st.columns(3)
    if c1.button("✅ Confirm", type="primary"):
        try:
            if run_async(chat.confirm(completion, active_filter=category_filter)):
                st.session_state.pending_completion = None
                st.rerun()
        except ValidationError as e:
            show_validation_error(e)
    if len(completion.transactions) == 1 and c2.button("✏️ Edit first"):
        st.session_state.entry_prefill = chat.drafts_for(completion)[0]
        st.session_state.pending_completion = None
        st.info("Open 'Add Transaction' to finish this entry.")
    if c3.button("Discard"):
        st.session_state.pending_completion = None
        st.rerun()


def _cell(value):
    """Empty data_editor cells come back as NaN/NaT/None."""
    return None if pd.isna(value) else value


def render_import_page(components: AppComponents):
    """Upload statements and receipts, review, import."""
    bulk = components.bulk_import
    settings = get_settings().app
    st.title("📥 Bulk Import")

    uploads = st.file_uploader(
        "Statements, receipts or CSV exports",
        type=settings.supported_formats_list,
        accept_multiple_files=True,
    )
    if uploads and st.button("🔍 Process Files", type="primary"):
        try:
            files = [bulk.prepare_file(u.name, u.getvalue()) for u in uploads]
        except ValidationError as e:
            show_validation_error(e)
        else:
            with st.spinner("Reading your files..."):
                st.session_state.import_rows = run_async(bulk.process_files(files))
            st.rerun()

    rows: list[ImportRow] = st.session_state.get("import_rows") or []
    if not rows:
        return

    table = pd.DataFrame([
        {
            "Import": row.is_checked,
            "Status": row.candidate.status.value if row.candidate.status else "",
            "Date": row.candidate.date.date() if row.candidate.date else None,
            "Type": row.candidate.type.value if row.candidate.type else None,
            "Amount": float(row.candidate.amount) if row.candidate.amount is not None else None,
            "Category": row.candidate.main_category,
            "Payee": row.candidate.payee or "",
            "File": row.candidate.source_file or "",
        }
        for row in rows
    ])
    edited = st.data_editor(
        table,
        column_config={
            "Date": st.column_config.DateColumn("Date"),
            "Type": st.column_config.SelectboxColumn(
                "Type",
                options=[TransactionType.EXPENSE.value, TransactionType.INCOME.value],
            ),
            "Amount": st.column_config.NumberColumn("Amount", min_value=0.0, format="%.2f"),
            "Category": st.column_config.SelectboxColumn(
                "Category",
                options=[c.value for c in MAIN_CATEGORIES],
            ),
        },
        disabled=["Status", "File"],
        hide_index=True,
    )

    if st.button("📥 Import Selected", type="primary"):
        reviewed = [
            bulk.revise_row(
                row,
                bool(record["Import"]),
                date=_cell(record["Date"]),
                type=_cell(record["Type"]),
                amount=_cell(record["Amount"]),
                main_category=_cell(record["Category"]),
                payee=_cell(record["Payee"]),
            )
            for row, record in zip(rows, edited.to_dict("records"))
        ]
        try:
            count = run_async(bulk.import_rows(reviewed))
        except ValidationError as e:
            show_validation_error(e)
        else:
            if count:
                st.session_state.import_rows = None
                st.rerun()


def render_borrowings_page(components: AppComponents):
    """Loans: add, repay, track."""
    ledger = components.ledger
    flow = components.borrowings
    st.title("🤝 Borrowings")

    with st.expander("➕ Add Loan"):
        lender = st.text_input("Lender name")
        c1, c2 = st.columns(2)
        principal = c1.text_input("Principal")
        interest = c2.text_input("Interest %", value="0")
        c3, c4 = st.columns(2)
        loan_day = c3.date_input("Loan date", value=date.today())
        return_day = c4.date_input("Return date", value=None)
        costs = st.data_editor(
            pd.DataFrame({"description": [""], "amount": [0.0]}),
            num_rows="dynamic",
            key="loan_costs",
        )
        if st.button("Save Loan", type="primary"):
            draft = BorrowingDraft(
                lender_name=lender,
                principal=principal,
                interest=interest,
                additional_costs=costs.to_dict("records"),
                loan_date=to_instant(loan_day),
                return_date=to_instant(return_day) if return_day else None,
            )
            try:
                if run_async(flow.add_loan(draft)):
                    st.rerun()
            except ValidationError as e:
                show_validation_error(e)

    active, paid = flow.views()
    st.markdown("### Active loans")
    if not active:
        st.info("No active loans.")
    for view in active:
        loan = view.borrowing
        st.markdown(f"**{loan.lender_name}** · due {loan.return_date.strftime('%d %b %Y')}")
        st.progress(view.progress_percent / 100, text=(
            f"Repaid {money(view.total_repaid, ledger)} of {money(view.total_due, ledger)}"
        ))
        c1, c2 = st.columns([3, 1])
        amount = c1.text_input("Repayment", key=f"repay-{loan.id}")
        if c2.button("Repay", key=f"repay-btn-{loan.id}"):
            try:
                if run_async(flow.repay(loan.id, amount)):
                    st.rerun()
            except ValidationError as e:
                show_validation_error(e)

    if paid:
        st.markdown("### Paid off")
        for view in paid:
            st.markdown(f"✅ {view.borrowing.lender_name} · {money(view.total_due, ledger)}")


def render_reports_page(components: AppComponents):
    """Period reports, insights and export."""
    reports = components.reports
    ledger = components.ledger
    st.title("📈 Reports")

    period = st.radio(
        "Period",
        options=list(Period),
        index=2,
        format_func=lambda p: p.value.title(),
        horizontal=True,
    )
    display = st.session_state.get("report_date") or datetime.now(timezone.utc)
    report = reports.period_report(period, display)

    c1, c2, c3 = st.columns([1, 3, 1])
    if c1.button("◀ Previous"):
        st.session_state.report_date = reports.engine.shift(period, display, -1)
        st.rerun()
    c2.markdown(f"### {report.label}")
    if c3.button("Next ▶", disabled=not report.can_navigate_next):
        st.session_state.report_date = reports.engine.shift(period, display, 1)
        st.rerun()

    st.dataframe(
        pd.DataFrame([
            {
                "Category": category.value,
                "Income": float(totals.income),
                "Expense": float(totals.expense),
                "Net": float(totals.net),
            }
            for category, totals in report.rollup.items()
        ]),
        hide_index=True,
    )
    st.caption(f"{report.transaction_count} transactions in this period")

    if st.button("💡 Get AI Insights"):
        with st.spinner("Analysing..."):
            st.info(run_async(reports.insights(report.window)))

    st.download_button(
        "⬇️ Export all transactions (CSV)",
        data=reports.export_csv(),
        file_name=f"ledger-{date.today().isoformat()}.csv",
        mime="text/csv",
        disabled=not ledger.transactions,
    )


def render_settings_page(components: AppComponents):
    """Preferences, budgets, templates and connection status."""
    ledger = components.ledger
    settings = ledger.settings
    st.title("⚙️ Settings")

    st.markdown("### Preferences")
    c1, c2 = st.columns(2)
    currency = c1.selectbox("Currency", list(Currency), index=list(Currency).index(settings.currency),
                            format_func=lambda c: c.value)
    theme = c2.selectbox("Theme", list(Theme), index=list(Theme).index(settings.theme),
                         format_func=lambda t: t.value.title())
    voice = st.checkbox("Voice input", value=settings.voice_enabled)
    pin = st.text_input("New PIN (leave blank to keep)", type="password", max_chars=8)
    if st.button("Save Preferences"):
        changes = {"currency": currency, "theme": theme, "voice_enabled": voice}
        if pin:
            changes["pin"] = pin
        try:
            run_async(ledger.update_settings(**changes))
        except ValidationError as e:
            show_validation_error(e)

    st.markdown("### Budgets")
    used = {b.category for b in ledger.budgets}
    for budget in ledger.budgets:
        c1, c2 = st.columns([4, 1])
        c1.markdown(f"{budget.category.value}: {money(budget.limit, ledger)} per month")
        if c2.button("Remove", key=f"budget-{budget.id}"):
            run_async(ledger.delete_budget(budget.id))
            st.rerun()
    available = [c for c in MAIN_CATEGORIES if c not in used]
    if available:
        c1, c2, c3 = st.columns([2, 2, 1])
        category = c1.selectbox("Category", available, format_func=lambda c: c.value)
        limit = c2.text_input("Monthly limit")
        if c3.button("Add Budget"):
            try:
                run_async(ledger.add_budget(category, limit))
                st.rerun()
            except ValidationError as e:
                show_validation_error(e)

    st.markdown("### Templates")
    templates: list[Template] = ledger.templates
    if not templates:
        st.caption("Save a template from the Add Transaction form.")
    for template in templates:
        c1, c2 = st.columns([4, 1])
        body = template.transaction
        c1.markdown(f"**{template.name}** · {body.main_category.value} · {money(body.amount, ledger)}")
        if c2.button("Delete", key=f"template-{template.name}"):
            run_async(ledger.delete_template(template.name))
            st.rerun()

    st.markdown("---")
    st.markdown("### Connection Status")
    status = validate_all_settings()
    services = [
        ("Google Sheets (Shared ledger)", "google_sheets"),
        ("Gemini (AI)", "gemini"),
        ("App", "app"),
    ]
    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")
    st.markdown(
        "To configure the application, create a `.env` file with your keys. "
        "See `.env.example` for the required variables."
    )


if __name__ == "__main__":
    main()
