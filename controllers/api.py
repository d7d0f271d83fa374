# controllers/api.py
"""JSON API the invoicing/billing/payroll collaborators call into."""
import pandas as pd
from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from models import coa_store, journal_store, subledger_store
from services import accounting, fiscal_calendar, gl_posting, reconciliation
from services.datetimex import to_date, to_date_or_none, today_utc
from services.errors import ValidationError

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _tenant() -> str:
    return current_user.tenant_id


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _frame(df: pd.DataFrame) -> dict:
    return {"rows": df.to_dict(orient="records"), "summary": dict(df.attrs)}


# ---- Chart of accounts ----

@api_bp.get("/accounts")
@login_required
def accounts_list():
    include_inactive = request.args.get("include_inactive") in ("1", "true", "yes")
    return jsonify(coa_store.list_accounts(_tenant(), include_inactive=include_inactive))


@api_bp.post("/accounts")
@login_required
def accounts_create():
    p = _body()
    acc = coa_store.create_account(
        _tenant(), p.get("code"), p.get("name"), p.get("type"),
        parent_id=p.get("parent_id"), category=p.get("category"),
        description=p.get("description"),
    )
    return jsonify(acc), 201


@api_bp.patch("/accounts/<int:account_id>")
@login_required
def accounts_update(account_id: int):
    return jsonify(coa_store.update_account(_tenant(), account_id, **_body()))


# ---- Journal entries ----

@api_bp.get("/entries")
@login_required
def entries_list():
    posted = request.args.get("posted")
    return jsonify(journal_store.list_entries(
        _tenant(),
        posted=None if posted is None else posted in ("1", "true", "yes"),
        start=to_date_or_none(request.args.get("start"), "start"),
        end=to_date_or_none(request.args.get("end"), "end"),
        limit=min(request.args.get("limit", 200, type=int), 1000),
    ))


@api_bp.post("/entries")
@login_required
def entries_create():
    p = _body()
    entry_id = journal_store.create_draft_entry(
        _tenant(), p.get("entry_date"), p.get("description"),
        p.get("reference_type"), p.get("reference_id"),
        posting_date=p.get("posting_date"), notes=p.get("notes"),
        created_by=current_user.username, lines=p.get("lines") or None,
    )
    return jsonify(journal_store.get_entry(_tenant(), entry_id)), 201


@api_bp.get("/entries/<int:entry_id>")
@login_required
def entries_get(entry_id: int):
    return jsonify(journal_store.get_entry(_tenant(), entry_id))


@api_bp.patch("/entries/<int:entry_id>")
@login_required
def entries_update(entry_id: int):
    return jsonify(journal_store.update_entry(_tenant(), entry_id, **_body()))


@api_bp.delete("/entries/<int:entry_id>")
@login_required
def entries_delete(entry_id: int):
    journal_store.delete_draft(_tenant(), entry_id, current_user.username,
                               actor_role=current_user.role)
    return "", 204


@api_bp.post("/entries/<int:entry_id>/lines")
@login_required
def lines_add(entry_id: int):
    p = _body()
    if "lines" in p:
        ids = journal_store.add_lines(_tenant(), entry_id, p["lines"])
    else:
        ids = [journal_store.add_line(
            _tenant(), entry_id, p.get("account_id"), p.get("debit", 0), p.get("credit", 0),
            p.get("memo"), currency=p.get("currency"), exchange_rate=p.get("exchange_rate"),
        )]
    return jsonify(line_ids=ids, entry=journal_store.get_entry(_tenant(), entry_id)), 201


@api_bp.put("/entries/<int:entry_id>/lines")
@login_required
def lines_replace(entry_id: int):
    ids = journal_store.replace_lines(_tenant(), entry_id, _body().get("lines") or [])
    return jsonify(line_ids=ids, entry=journal_store.get_entry(_tenant(), entry_id))


@api_bp.patch("/lines/<int:line_id>")
@login_required
def lines_update(line_id: int):
    return jsonify(journal_store.update_line(_tenant(), line_id, **_body()))


@api_bp.delete("/lines/<int:line_id>")
@login_required
def lines_remove(line_id: int):
    journal_store.remove_line(_tenant(), line_id)
    return "", 204


@api_bp.post("/entries/<int:entry_id>/post")
@login_required
def entries_post(entry_id: int):
    return jsonify(gl_posting.post_entry(_tenant(), entry_id, current_user.username))


@api_bp.post("/entries/<int:entry_id>/reverse")
@login_required
def entries_reverse(entry_id: int):
    p = _body()
    rev = gl_posting.reverse_entry(
        _tenant(), entry_id, p.get("date") or today_utc(), p.get("reason"),
        current_user.username)
    return jsonify(rev), 201


# ---- Reports ----

@api_bp.get("/reports/trial-balance")
@login_required
def report_trial_balance():
    as_of = to_date_or_none(request.args.get("as_of"), "as_of")
    return jsonify(_frame(accounting.trial_balance(_tenant(), as_of)))


@api_bp.get("/reports/profit-and-loss")
@login_required
def report_profit_and_loss():
    end = to_date_or_none(request.args.get("end"), "end") or today_utc()
    start = to_date_or_none(request.args.get("start"), "start") or end.replace(month=1, day=1)
    return jsonify(_frame(accounting.profit_and_loss(_tenant(), start, end)))


@api_bp.get("/reports/cash-position")
@login_required
def report_cash_position():
    as_of = to_date_or_none(request.args.get("as_of"), "as_of")
    return jsonify(_frame(accounting.cash_position(_tenant(), as_of)))


@api_bp.get("/reports/balance-sheet")
@login_required
def report_balance_sheet():
    as_of = to_date_or_none(request.args.get("as_of"), "as_of")
    return jsonify(accounting.balance_sheet(_tenant(), as_of))


@api_bp.get("/reports/ar-aging")
@login_required
def report_ar_aging():
    as_of = to_date_or_none(request.args.get("as_of"), "as_of") or today_utc()
    return jsonify(_frame(accounting.ar_aging(_tenant(), as_of)))


@api_bp.get("/reports/ap-aging")
@login_required
def report_ap_aging():
    as_of = to_date_or_none(request.args.get("as_of"), "as_of") or today_utc()
    return jsonify(_frame(accounting.ap_aging(_tenant(), as_of)))


# ---- Fiscal calendar (read side) ----

@api_bp.get("/periods")
@login_required
def periods_list():
    return jsonify(fiscal_calendar.list_periods(_tenant(), request.args.get("year", type=int)))


@api_bp.get("/periods/locked")
@login_required
def periods_locked():
    day = to_date(request.args.get("date"), "date")
    return jsonify(date=day, locked=fiscal_calendar.is_locked(_tenant(), day),
                   status=fiscal_calendar.period_status(_tenant(), day))


# ---- Reconciliation ----

@api_bp.post("/reconciliation/run")
@login_required
def reconciliation_run():
    only = _body().get("only")
    results = reconciliation.reconcile(_tenant(), current_user.username, only=only)
    return jsonify([r.__dict__ for r in results])


@api_bp.get("/reconciliation/status")
@login_required
def reconciliation_status():
    return jsonify(reconciliation.get_latest_reconciliation_status(_tenant()))


@api_bp.get("/reconciliation/alerts")
@login_required
def reconciliation_alerts():
    unresolved_only = request.args.get("all") not in ("1", "true", "yes")
    return jsonify(reconciliation.list_alerts(_tenant(), unresolved_only=unresolved_only))


@api_bp.get("/reconciliation/runs")
@login_required
def reconciliation_runs():
    return jsonify(reconciliation.list_runs(_tenant()))


# ---- Subledger documents ----

@api_bp.get("/invoices")
@login_required
def invoices_list():
    statuses = tuple(request.args.getlist("status")) or None
    return jsonify(subledger_store.list_invoices(_tenant(), statuses))


@api_bp.post("/invoices")
@login_required
def invoices_create():
    p = _body()
    inv = subledger_store.create_invoice(
        _tenant(), p.get("number"), p.get("customer"), p.get("issue_date"),
        p.get("total_amount"), due_date=p.get("due_date"),
        status=p.get("status", "draft"), currency=p.get("currency"),
    )
    return jsonify(inv), 201


@api_bp.patch("/invoices/<int:invoice_id>")
@login_required
def invoices_status(invoice_id: int):
    return jsonify(subledger_store.set_invoice_status(_tenant(), invoice_id, _body().get("status")))


@api_bp.get("/bills")
@login_required
def bills_list():
    statuses = tuple(request.args.getlist("status")) or None
    return jsonify(subledger_store.list_bills(_tenant(), statuses))


@api_bp.post("/bills")
@login_required
def bills_create():
    p = _body()
    bill = subledger_store.create_bill(
        _tenant(), p.get("number"), p.get("vendor"), p.get("bill_date"),
        p.get("total_amount"), due_date=p.get("due_date"),
        status=p.get("status", "draft"), currency=p.get("currency"),
    )
    return jsonify(bill), 201


@api_bp.patch("/bills/<int:bill_id>")
@login_required
def bills_status(bill_id: int):
    return jsonify(subledger_store.set_bill_status(_tenant(), bill_id, _body().get("status")))
