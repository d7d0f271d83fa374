# services/reconciliation.py
"""
Reconciliation engine.

Ties each registered subledger to its control-account balance as reported
by the canonical views. A variance is data, not an error: it becomes an
alert row that a person resolves. Only a check that cannot run at all
(no control account, for instance) raises.
"""
from __future__ import annotations
import logging
import time
from dataclasses import asdict, dataclass
from decimal import Decimal

from sqlalchemy import select, func

from models.audit_store import audit
from models.base import session_scope
from models.ledger import ReconciliationAlert, ReconciliationRun
from services.accounting import control_account_balance
from services.datetimex import now_utc
from services.errors import NotFoundError, ReconciliationError, ValidationError
from services.metrics import RECON_ALERTS, RECON_RUNS
from services.money import money
from services.settings import cfg_decimal
from services.subledgers.base import CheckResult, Subledger
from services.subledgers.registry import get_subledger, registered_subledgers
from services.txn import ledger_scope

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thresholds:
    epsilon: Decimal = Decimal("0.01")
    high: Decimal = Decimal("100")
    critical: Decimal = Decimal("1000")

    @classmethod
    def from_config(cls) -> "Thresholds":
        return cls(
            epsilon=cfg_decimal("RECON_EPSILON", "0.01"),
            high=cfg_decimal("RECON_HIGH_THRESHOLD", "100"),
            critical=cfg_decimal("RECON_CRITICAL_THRESHOLD", "1000"),
        )


def severity_for(variance: Decimal, th: Thresholds) -> str:
    size = abs(variance)
    if size > th.critical:
        return "critical"
    if size > th.high:
        return "high"
    return "medium"


def _check(tenant_id: str, sl: Subledger, th: Thresholds) -> CheckResult:
    sub = money(sl.subledger_total(tenant_id))
    ctl = money(control_account_balance(tenant_id, sl.control_category))
    variance = money(sub - ctl)
    mismatch = abs(variance) > th.epsilon
    return CheckResult(
        reconciliation_type=sl.name,
        status="mismatch" if mismatch else "balanced",
        subledger_total=sub,
        control_balance=ctl,
        variance=variance,
        severity=severity_for(variance, th) if mismatch else None,
        records_checked=sl.records_checked(tenant_id),
    )


def _alert_for(tenant_id: str, run_id: int, sl: Subledger, r: CheckResult) -> ReconciliationAlert:
    pct = None
    if r.subledger_total != 0:
        pct = (r.variance / r.subledger_total * 100).quantize(Decimal("0.01"))
    return ReconciliationAlert(
        tenant_id=tenant_id, run_id=run_id, alert_type=sl.alert_type,
        severity=r.severity,
        title=f"{sl.label} Mismatch Detected",
        description=(f"{sl.label} subledger total {r.subledger_total} does not match "
                     f"control account balance {r.control_balance} "
                     f"(variance {r.variance})"),
        expected_value=r.subledger_total,
        actual_value=r.control_balance,
        variance=r.variance,
        variance_percentage=pct,
        details={"subledger": sl.name, "control_category": sl.control_category,
                 "records_checked": r.records_checked},
        detected_at=now_utc(),
    )


def _result_json(r: CheckResult) -> dict:
    return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in asdict(r).items()}


def reconcile(tenant_id: str, actor: str = "system", *, thresholds: Thresholds | None = None,
              only: list[str] | None = None) -> list[CheckResult]:
    """
    Run every registered subledger check (or the ones named in `only`),
    store one run record plus an alert per mismatch, and return the results.
    """
    th = thresholds or Thresholds.from_config()
    try:
        subledgers = [get_subledger(n) for n in only] if only else list(registered_subledgers())
    except KeyError as e:
        raise ValidationError(str(e.args[0]))

    t0 = time.perf_counter()
    results: list[CheckResult] = []
    try:
        for sl in subledgers:
            results.append(_check(tenant_id, sl, th))
    except ReconciliationError as e:
        duration_ms = int((time.perf_counter() - t0) * 1000)
        with session_scope() as s:
            s.add(ReconciliationRun(
                tenant_id=tenant_id, reconciliation_type="full", status="failed",
                alerts_created=0, records_checked=sum(r.records_checked for r in results),
                variance_found=Decimal("0"), run_by=actor, run_at=now_utc(),
                duration_ms=duration_ms,
                details={"error": e.code, "message": e.message,
                         "checks": [_result_json(r) for r in results]},
            ))
        RECON_RUNS.labels(status="failed").inc()
        audit("recon.run", tenant_id=tenant_id, target_type="reconciliation",
              target_id=tenant_id, outcome="failure", status=e.http_status,
              error_code=e.code, actor=actor, extra={"reason": e.message})
        log.error("tenant=%s reconciliation failed: %s", tenant_id, e.message)
        raise

    by_name = {sl.name: sl for sl in subledgers}
    mismatches = [r for r in results if r.status == "mismatch"]
    duration_ms = int((time.perf_counter() - t0) * 1000)
    with ledger_scope() as s:
        run = ReconciliationRun(
            tenant_id=tenant_id, reconciliation_type="full",
            status="warning" if mismatches else "success",
            alerts_created=len(mismatches),
            records_checked=sum(r.records_checked for r in results),
            variance_found=sum((abs(r.variance) for r in mismatches), Decimal("0.00")),
            run_by=actor, run_at=now_utc(), duration_ms=duration_ms,
            details={"checks": [_result_json(r) for r in results]},
        )
        s.add(run)
        s.flush()
        for r in mismatches:
            alert = _alert_for(tenant_id, run.id, by_name[r.reconciliation_type], r)
            s.add(alert)
            s.flush()
            r.alert_id = alert.id
        run_status = run.status

    RECON_RUNS.labels(status=run_status).inc()
    for r in mismatches:
        RECON_ALERTS.labels(alert_type=by_name[r.reconciliation_type].alert_type,
                            severity=r.severity).inc()
        log.warning("tenant=%s %s variance %s (%s)", tenant_id,
                    r.reconciliation_type, r.variance, r.severity)
    audit("recon.run", tenant_id=tenant_id, target_type="reconciliation",
          target_id=tenant_id, outcome="success", status=200, actor=actor,
          extra={"status": run_status, "alerts": len(mismatches),
                 "variance": str(sum((abs(r.variance) for r in mismatches), Decimal("0.00")))})
    return results


def get_latest_reconciliation_status(tenant_id: str) -> dict:
    with session_scope() as s:
        last = s.execute(
            select(ReconciliationRun)
            .where(ReconciliationRun.tenant_id == tenant_id)
            .order_by(ReconciliationRun.run_at.desc(), ReconciliationRun.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        open_q = select(func.count(ReconciliationAlert.id)).where(
            ReconciliationAlert.tenant_id == tenant_id,
            ReconciliationAlert.resolved_at.is_(None),
        )
        unresolved = s.execute(open_q).scalar_one()
        critical = s.execute(
            open_q.where(ReconciliationAlert.severity == "critical")).scalar_one()
        return {
            "last_reconciled_at": last.run_at if last else None,
            "status": last.status if last else "never_run",
            "unresolved_alerts": unresolved,
            "critical_alerts": critical,
        }


def _alert_dict(a: ReconciliationAlert) -> dict:
    return {
        "id": a.id, "tenant_id": a.tenant_id, "run_id": a.run_id,
        "alert_type": a.alert_type, "severity": a.severity,
        "title": a.title, "description": a.description,
        "expected_value": a.expected_value, "actual_value": a.actual_value,
        "variance": a.variance, "variance_percentage": a.variance_percentage,
        "details": a.details or {}, "detected_at": a.detected_at,
        "resolved_at": a.resolved_at, "resolved_by": a.resolved_by,
        "resolution_notes": a.resolution_notes,
    }


def list_alerts(tenant_id: str, unresolved_only: bool = True, limit: int = 200) -> list[dict]:
    with session_scope() as s:
        q = select(ReconciliationAlert).where(ReconciliationAlert.tenant_id == tenant_id)
        if unresolved_only:
            q = q.where(ReconciliationAlert.resolved_at.is_(None))
        q = q.order_by(ReconciliationAlert.detected_at.desc(),
                       ReconciliationAlert.id.desc()).limit(limit)
        return [_alert_dict(a) for a in s.execute(q).scalars()]


def list_runs(tenant_id: str, limit: int = 20) -> list[dict]:
    with session_scope() as s:
        rows = s.execute(
            select(ReconciliationRun)
            .where(ReconciliationRun.tenant_id == tenant_id)
            .order_by(ReconciliationRun.id.desc()).limit(limit)
        ).scalars().all()
        return [{
            "id": r.id, "status": r.status, "alerts_created": r.alerts_created,
            "records_checked": r.records_checked, "variance_found": r.variance_found,
            "run_by": r.run_by, "run_at": r.run_at, "duration_ms": r.duration_ms,
        } for r in rows]


def resolve_alert(tenant_id: str, alert_id: int, actor: str, notes: str | None = None) -> dict:
    """Record a person's resolution of an alert. Ledger data is never touched."""
    with ledger_scope() as s:
        a = s.execute(
            select(ReconciliationAlert).where(
                ReconciliationAlert.id == alert_id,
                ReconciliationAlert.tenant_id == tenant_id,
            ).with_for_update()
        ).scalar_one_or_none()
        if a is None:
            raise NotFoundError(f"alert {alert_id} not found")
        if a.resolved_at is not None:
            raise ValidationError(f"alert {alert_id} was already resolved by {a.resolved_by}")
        a.resolved_at = now_utc()
        a.resolved_by = actor
        a.resolution_notes = notes
        s.flush()
        out = _alert_dict(a)
    audit("recon.alert.resolve", tenant_id=tenant_id, target_type="reconciliation_alert",
          target_id=str(alert_id), outcome="success", status=200, actor=actor,
          extra={"note": notes})
    return out
