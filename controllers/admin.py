from flask import Blueprint, Response, jsonify, request
from flask_login import login_required, current_user

from controllers.auth import admin_required
from models.audit_store import audit, export_csv, list_audit, verify_chain
from models.coa_store import seed_default_chart
from models.users_db import create_user, list_users
from services import fiscal_calendar, reconciliation
from services.errors import ValidationError
from services.metrics import CSV_DOWNLOADS

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


# ---- Fiscal periods ----

@admin_bp.post("/periods/initialize")
@login_required
@admin_required
def periods_initialize():
    year = _body().get("year") or request.args.get("year", type=int)
    if not year:
        raise ValidationError("year is required")
    created = fiscal_calendar.initialize_fiscal_year(
        current_user.tenant_id, int(year), actor=current_user.username)
    return jsonify(year=int(year), created=created), 201


@admin_bp.post("/periods")
@login_required
@admin_required
def periods_create():
    p = _body()
    period = fiscal_calendar.create_period(
        current_user.tenant_id, p.get("year"), p.get("period"),
        p.get("start_date"), p.get("end_date"))
    return jsonify(period), 201


@admin_bp.post("/periods/<int:period_id>/close")
@login_required
@admin_required
def periods_close(period_id: int):
    return jsonify(fiscal_calendar.close_period(
        current_user.tenant_id, period_id, current_user.username))


@admin_bp.post("/periods/<int:period_id>/reopen")
@login_required
@admin_required
def periods_reopen(period_id: int):
    return jsonify(fiscal_calendar.reopen_period(
        current_user.tenant_id, period_id, current_user.username,
        actor_role=current_user.role))


@admin_bp.post("/periods/<int:period_id>/lock")
@login_required
@admin_required
def periods_lock(period_id: int):
    return jsonify(fiscal_calendar.lock_period(
        current_user.tenant_id, period_id, current_user.username,
        actor_role=current_user.role))


# ---- Chart of accounts ----

@admin_bp.post("/accounts/seed")
@login_required
@admin_required
def accounts_seed():
    created = seed_default_chart(current_user.tenant_id)
    audit("coa.seed", tenant_id=current_user.tenant_id, target_type="tenant",
          target_id=current_user.tenant_id, outcome="success", status=200,
          extra={"note": f"created={created}"})
    return jsonify(created=created)


# ---- Reconciliation ----

@admin_bp.post("/alerts/<int:alert_id>/resolve")
@login_required
@admin_required
def alerts_resolve(alert_id: int):
    return jsonify(reconciliation.resolve_alert(
        current_user.tenant_id, alert_id, current_user.username,
        notes=_body().get("notes")))


# ---- Users ----

@admin_bp.get("/users")
@login_required
@admin_required
def users_list():
    return jsonify(list_users(current_user.tenant_id))


@admin_bp.post("/users")
@login_required
@admin_required
def users_create():
    p = _body()
    ok = create_user(p.get("username") or "", p.get("password") or "",
                     role=p.get("role", "user"), tenant_id=current_user.tenant_id)
    if not ok:
        raise ValidationError("could not create user (bad input or username taken)")
    audit("user.create", tenant_id=current_user.tenant_id, target_type="user",
          target_id=p.get("username"), outcome="success", status=201)
    return jsonify(username=p.get("username"), tenant_id=current_user.tenant_id), 201


# ---- Audit ----

@admin_bp.get("/audit")
@login_required
@admin_required
def audit_list():
    limit = min(request.args.get("limit", 100, type=int), 1000)
    return jsonify(list_audit(current_user.tenant_id, limit=limit))


@admin_bp.get("/audit/verify")
@login_required
@admin_required
def audit_verify():
    return jsonify(verify_chain(request.args.get("limit", type=int)))


@admin_bp.get("/audit.csv")
@login_required
@admin_required
def audit_csv():
    fname, csv_text = export_csv(current_user.tenant_id)
    CSV_DOWNLOADS.labels(kind="audit").inc()
    audit("export.audit_csv", tenant_id=current_user.tenant_id, target_type="scope",
          target_id="admin", outcome="success", status=200)
    return Response(csv_text, mimetype="text/csv",
                    headers={"Content-Disposition": f"attachment; filename={fname}"})
