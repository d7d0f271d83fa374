# services/fiscal_calendar.py
"""
Fiscal calendar: per-tenant, non-overlapping periods that gate every
ledger-affecting write by date.

open -> closed -> locked. Only an admin may reopen a closed period; a
locked period never reopens.
"""
from __future__ import annotations
import calendar
import logging
from datetime import date, timedelta

from sqlalchemy import select

from models.audit_store import audit
from models.base import session_scope
from models.ledger import FiscalPeriod
from services.datetimex import now_utc, to_date
from services.errors import (
    NotFoundError, PeriodLockedError, PermissionDeniedError, ValidationError
)
from services.metrics import PERIOD_TRANSITIONS
from services.txn import ledger_scope

log = logging.getLogger(__name__)

LOCKED_STATUSES = ("closed", "locked")


def _to_dict(p: FiscalPeriod) -> dict:
    return {
        "id": p.id,
        "tenant_id": p.tenant_id,
        "year": p.year,
        "period": p.period,
        "name": f"{p.year}-P{p.period:02d}",
        "start_date": p.start_date,
        "end_date": p.end_date,
        "status": p.status,
        "closed_at": p.closed_at,
        "closed_by": p.closed_by,
        "locked_at": p.locked_at,
        "locked_by": p.locked_by,
    }


def _period_for(s, tenant_id: str, day: date) -> FiscalPeriod | None:
    return s.execute(
        select(FiscalPeriod).where(
            FiscalPeriod.tenant_id == tenant_id,
            FiscalPeriod.start_date <= day,
            FiscalPeriod.end_date >= day,
        ).limit(1)
    ).scalar_one_or_none()


def _overlaps(s, tenant_id: str, start: date, end: date) -> bool:
    return s.execute(
        select(FiscalPeriod.id).where(
            FiscalPeriod.tenant_id == tenant_id,
            FiscalPeriod.start_date <= end,
            FiscalPeriod.end_date >= start,
        ).limit(1)
    ).first() is not None


def assert_open(s, tenant_id: str, day, *, what: str = "entry") -> None:
    """Raise PeriodLockedError when `day` falls in a closed or locked period."""
    day = to_date(day)
    p = _period_for(s, tenant_id, day)
    if p is not None and p.status in LOCKED_STATUSES:
        raise PeriodLockedError(
            f"{what} date {day.isoformat()} falls in {p.status} period {p.year}-P{p.period:02d}",
            period_id=p.id, status=p.status)


def is_locked(tenant_id: str, day) -> bool:
    """True iff `day` falls in a closed or locked period. No period means open."""
    day = to_date(day)
    with session_scope() as s:
        p = _period_for(s, tenant_id, day)
        return p is not None and p.status in LOCKED_STATUSES


def period_status(tenant_id: str, day) -> str | None:
    day = to_date(day)
    with session_scope() as s:
        p = _period_for(s, tenant_id, day)
        return p.status if p else None


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def _add_period(s, tenant_id: str, year: int, period: int, start: date, end: date) -> FiscalPeriod:
    if not 1 <= period <= 12:
        raise ValidationError("period number must be within 1..12")
    if end <= start:
        raise ValidationError("period end must be after its start")
    exists = s.execute(
        select(FiscalPeriod.id).where(
            FiscalPeriod.tenant_id == tenant_id,
            FiscalPeriod.year == year,
            FiscalPeriod.period == period,
        )
    ).first()
    if exists:
        raise ValidationError(f"period {year}-P{period:02d} already exists")
    if _overlaps(s, tenant_id, start, end):
        raise ValidationError(
            f"period {start.isoformat()}..{end.isoformat()} overlaps an existing period")
    p = FiscalPeriod(tenant_id=tenant_id, year=year, period=period,
                     start_date=start, end_date=end, status="open")
    s.add(p)
    s.flush()
    return p


def create_period(tenant_id: str, year: int, period: int, start_date, end_date) -> dict:
    start, end = to_date(start_date, "start_date"), to_date(end_date, "end_date")
    with ledger_scope() as s:
        return _to_dict(_add_period(s, tenant_id, int(year), int(period), start, end))


def initialize_fiscal_year(tenant_id: str, year: int, actor: str | None = None) -> int:
    """Create the 12 calendar-month periods of `year`; existing slots are kept."""
    created = 0
    with ledger_scope() as s:
        for month in range(1, 13):
            start, end = _month_bounds(year, month)
            taken = s.execute(
                select(FiscalPeriod.id).where(
                    FiscalPeriod.tenant_id == tenant_id,
                    FiscalPeriod.year == year,
                    FiscalPeriod.period == month,
                )
            ).first()
            if taken or _overlaps(s, tenant_id, start, end):
                continue
            _add_period(s, tenant_id, year, month, start, end)
            created += 1
    audit("fiscal.year.initialized", tenant_id=tenant_id, target_type="fiscal_year",
          target_id=str(year), outcome="success", status=200, actor=actor,
          extra={"note": f"created={created}"})
    return created


def list_periods(tenant_id: str, year: int | None = None) -> list[dict]:
    with session_scope() as s:
        q = select(FiscalPeriod).where(FiscalPeriod.tenant_id == tenant_id)
        if year is not None:
            q = q.where(FiscalPeriod.year == year)
        rows = s.execute(q.order_by(FiscalPeriod.start_date)).scalars().all()
        return [_to_dict(p) for p in rows]


def get_period(tenant_id: str, period_id: int) -> dict:
    with session_scope() as s:
        p = s.get(FiscalPeriod, period_id)
        if p is None or p.tenant_id != tenant_id:
            raise NotFoundError(f"fiscal period {period_id} not found")
        return _to_dict(p)


def _load_for_update(s, tenant_id: str, period_id: int) -> FiscalPeriod:
    p = s.execute(
        select(FiscalPeriod).where(
            FiscalPeriod.id == period_id,
            FiscalPeriod.tenant_id == tenant_id,
        ).with_for_update()
    ).scalar_one_or_none()
    if p is None:
        raise NotFoundError(f"fiscal period {period_id} not found")
    return p


def _require_admin(actor_role: str | None, action: str) -> None:
    if actor_role != "admin":
        raise PermissionDeniedError(f"{action} requires the admin role")


def _next_slot(p: FiscalPeriod) -> tuple[int, int, date, date]:
    year, period = (p.year + 1, 1) if p.period == 12 else (p.year, p.period + 1)
    start = p.end_date + timedelta(days=1)
    end = date(start.year, start.month,
               calendar.monthrange(start.year, start.month)[1])
    if end <= start:
        # start is the last day of a month; run through the following month
        nxt = start.replace(day=1) + timedelta(days=32)
        end = date(nxt.year, nxt.month, calendar.monthrange(nxt.year, nxt.month)[1])
    return year, period, start, end


def close_period(tenant_id: str, period_id: int, actor: str) -> dict:
    """
    open -> closed. Also opens the next calendar period when that slot is
    free, so dates right after a close always have a period.
    """
    next_created = None
    try:
        with ledger_scope() as s:
            p = _load_for_update(s, tenant_id, period_id)
            if p.status != "open":
                raise ValidationError(f"period is already {p.status}")
            p.status = "closed"
            p.closed_by = actor
            p.closed_at = now_utc()
            s.flush()

            year, period, start, end = _next_slot(p)
            taken = s.execute(
                select(FiscalPeriod.id).where(
                    FiscalPeriod.tenant_id == tenant_id,
                    FiscalPeriod.year == year,
                    FiscalPeriod.period == period,
                )
            ).first()
            if not taken and not _overlaps(s, tenant_id, start, end):
                next_created = _to_dict(
                    _add_period(s, tenant_id, year, period, start, end))
            out = _to_dict(p)
    except (ValidationError, NotFoundError) as e:
        audit("fiscal.period.close", tenant_id=tenant_id, target_type="fiscal_period",
              target_id=str(period_id), outcome="blocked", status=e.http_status,
              error_code=e.code, actor=actor, extra={"reason": e.message})
        raise

    PERIOD_TRANSITIONS.labels(action="close").inc()
    audit("fiscal.period.close", tenant_id=tenant_id, target_type="fiscal_period",
          target_id=str(period_id), outcome="success", status=200, actor=actor,
          extra={"period": out["name"],
                 "next_period": next_created["name"] if next_created else None})
    log.info("tenant=%s closed fiscal period %s", tenant_id, out["name"])
    out["next_period"] = next_created
    return out


def reopen_period(tenant_id: str, period_id: int, actor: str,
                  actor_role: str | None = None) -> dict:
    try:
        _require_admin(actor_role, "reopening a period")
        with ledger_scope() as s:
            p = _load_for_update(s, tenant_id, period_id)
            if p.status == "locked":
                raise PeriodLockedError(
                    f"period {p.year}-P{p.period:02d} is locked and cannot be reopened",
                    period_id=p.id, status=p.status)
            if p.status == "open":
                raise ValidationError("period is already open")
            p.status = "open"
            p.closed_by = None
            p.closed_at = None
            s.flush()
            out = _to_dict(p)
    except (ValidationError, NotFoundError, PeriodLockedError, PermissionDeniedError) as e:
        audit("fiscal.period.reopen", tenant_id=tenant_id, target_type="fiscal_period",
              target_id=str(period_id), outcome="blocked", status=e.http_status,
              error_code=e.code, actor=actor, actor_role=actor_role,
              extra={"reason": e.message})
        raise

    PERIOD_TRANSITIONS.labels(action="reopen").inc()
    audit("fiscal.period.reopen", tenant_id=tenant_id, target_type="fiscal_period",
          target_id=str(period_id), outcome="success", status=200, actor=actor,
          actor_role=actor_role, extra={"period": out["name"]})
    log.warning("tenant=%s reopened fiscal period %s (by %s)",
                tenant_id, out["name"], actor)
    return out


def lock_period(tenant_id: str, period_id: int, actor: str,
                actor_role: str | None = None) -> dict:
    """closed -> locked. There is no way back."""
    try:
        _require_admin(actor_role, "locking a period")
        with ledger_scope() as s:
            p = _load_for_update(s, tenant_id, period_id)
            if p.status != "closed":
                raise ValidationError(
                    f"only closed periods can be locked (status={p.status})")
            p.status = "locked"
            p.locked_by = actor
            p.locked_at = now_utc()
            s.flush()
            out = _to_dict(p)
    except (ValidationError, NotFoundError, PermissionDeniedError) as e:
        audit("fiscal.period.lock", tenant_id=tenant_id, target_type="fiscal_period",
              target_id=str(period_id), outcome="blocked", status=e.http_status,
              error_code=e.code, actor=actor, actor_role=actor_role,
              extra={"reason": e.message})
        raise

    PERIOD_TRANSITIONS.labels(action="lock").inc()
    audit("fiscal.period.lock", tenant_id=tenant_id, target_type="fiscal_period",
          target_id=str(period_id), outcome="success", status=200, actor=actor,
          actor_role=actor_role, extra={"period": out["name"]})
    return out
