# models/audit_store.py
import os
import json
import hmac
import hashlib
import threading
from typing import Any, Optional
from datetime import datetime, timezone
from flask import request, has_request_context, g, current_app
from sqlalchemy import select, asc
from models.base import session_scope
from models.schema import AuditLog
from flask_login import current_user

APP_SECRET = (os.getenv("AUDIT_HMAC_SECRET") or "secret-key").encode("utf-8")
ANONYMIZE_IP = os.getenv("AUDIT_ANONYMIZE_IP", "1") == "1"
SCHEMA_VERSION = 3
SIGNING_KEY_ID = os.getenv("AUDIT_HMAC_KEY_ID", "k1")

# one writer at a time per process, or two rows could link to the same prev_hash
_CHAIN_LOCK = threading.Lock()

_ALLOWED_EXTRA_KEYS = {
    "reason", "note", "period", "entry_number", "posting_date",
    "reversal_of", "reversal_id", "total", "lines", "attempts",
    "status", "alerts", "variance", "next_period", "old", "new",
}


def _load_keyring() -> dict[str, bytes]:
    ring: dict[str, bytes] = {}
    # Optional ring for rotated keys
    cfg = os.getenv("AUDIT_HMAC_KEYRING", "")
    if cfg:
        for part in cfg.split(","):
            part = part.strip()
            if not part or "=" not in part:
                continue
            kid, sec = part.split("=", 1)
            ring[kid.strip()] = sec.strip().encode("utf-8")
    # Always include current key
    ring[SIGNING_KEY_ID] = APP_SECRET
    return ring


def _ts_to_payload_str(ts_val: Any) -> str:
    """Recreate the exact 'ts' string format used when hashing."""
    if isinstance(ts_val, datetime):
        if ts_val.tzinfo is None:
            # SQLite hands back naive values; they were written as UTC
            ts_val = ts_val.replace(tzinfo=timezone.utc)
        ts_val = ts_val.astimezone(timezone.utc)
        return ts_val.isoformat(timespec="seconds").replace("+00:00", "Z")
    s = str(ts_val)
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    except ValueError:
        return s


def _rebuild_payload_from_row(r: AuditLog) -> dict:
    return {
        "ts": _ts_to_payload_str(r.ts),
        "tenant_id": r.tenant_id,
        "actor": r.actor,
        "actor_role": r.actor_role,
        "request_id": r.request_id,
        "session_id": r.session_id,
        "ip": r.ip,
        "ua": r.ua_fingerprint,
        "method": r.method,
        "path": r.path,
        "action": r.action,
        "target_type": r.target_type,
        "target_id": r.target_id,
        "outcome": r.outcome,
        "status": r.status,
        "error_code": r.error_code,
        "extra": r.extra or {},
        "schema_version": r.schema_version or SCHEMA_VERSION,
        "key_id": r.key_id,
    }


def verify_chain(limit: Optional[int] = None) -> dict:
    """
    Walk the whole audit trail in insertion order and recompute every link.

    Return:
      {
        "ok": bool,
        "checked": int,
        "last_ok_id": int | None,
        "first_bad_id": int | None,
        "reason": str | None
      }
    """
    ring = _load_keyring()
    prev = ""
    checked = 0
    last_ok = None

    def _bad(row_id, reason):
        return {"ok": False, "checked": checked, "last_ok_id": last_ok,
                "first_bad_id": row_id, "reason": reason}

    with session_scope() as s:
        q = select(AuditLog).order_by(asc(AuditLog.id))
        if limit:
            q = q.limit(int(limit))
        rows = s.execute(q).scalars().all()

        for r in rows:
            payload = _rebuild_payload_from_row(r)
            exp_hash = _compute_hash(prev, payload)

            if r.prev_hash != prev:
                return _bad(r.id, "prev_hash_mismatch")
            if r.hash != exp_hash:
                return _bad(r.id, "hash_mismatch")

            kid = payload.get("key_id") or SIGNING_KEY_ID
            key = ring.get(kid)
            if not key:
                return _bad(r.id, f"missing_key:{kid}")

            exp_sig = hmac.new(key, exp_hash.encode(
                "utf-8"), hashlib.sha256).hexdigest()
            if r.signature != exp_sig:
                return _bad(r.id, "signature_mismatch")

            # advance
            checked += 1
            last_ok = r.id
            prev = r.hash or ""

    return {
        "ok": True,
        "checked": checked,
        "last_ok_id": last_ok,
        "first_bad_id": None,
        "reason": None,
    }


def _latest_hash(s) -> str:
    row = s.execute(select(AuditLog.hash).order_by(
        AuditLog.id.desc()).limit(1)).first()
    return (row[0] or "") if row else ""


def _compute_hash(prev_hash: str, payload: dict) -> str:
    s = prev_hash + json.dumps(payload, separators=(",", ":"),
                               sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _sign(h: str) -> str:
    return hmac.new(APP_SECRET, h.encode("utf-8"), hashlib.sha256).hexdigest()


def _anon_ip(ip: str | None) -> str | None:
    if not ip:
        return None
    if not ANONYMIZE_IP:
        return ip
    # Simple IPv4 /24 or IPv6 /48 truncation
    if ":" in ip:
        parts = ip.split(":")
        return ":".join(parts[:3]) + "::"
    quads = ip.split(".")
    return ".".join(quads[:3]) + ".0"


def _fingerprint(val: str | None, maxlen: int = 64) -> str | None:
    if not val:
        return None
    return hashlib.sha256(val.encode("utf-8")).hexdigest()[:maxlen]


def _clean_extra(extra: Optional[dict[str, Any]]) -> dict:
    if not extra:
        return {}
    out = {}
    for k, v in extra.items():
        if k not in _ALLOWED_EXTRA_KEYS:
            continue
        if isinstance(v, str) and len(v) > 512:
            v = v[:512] + "…"
        elif not isinstance(v, (str, int, float, bool, list, dict, type(None))):
            v = str(v)  # Decimal, date
        out[k] = v
    return out


def audit(
    action: str,
    *,
    tenant_id: str | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    outcome: str | None = None,            # 'success'|'failure'|'blocked'
    status: int | None = None,
    error_code: str | None = None,
    extra: Optional[dict[str, Any]] = None,
    actor: Optional[str] = None,
    actor_role: Optional[str] = None,
) -> None:
    ts = datetime.now(timezone.utc).replace(microsecond=0)

    ip = ua = method = path = req_id = sess_id = None
    if has_request_context():
        fwd = request.headers.get("X-Forwarded-For", "")
        ip = _anon_ip(fwd.split(",")[0].strip() or request.remote_addr)
        method = request.method
        path = request.path
        req_id = getattr(g, "request_id", None) or request.headers.get(
            "X-Request-ID")
        # Never store raw session cookies; keep a stable fingerprint only.
        cookie_name = current_app.config.get(
            "SESSION_COOKIE_NAME") or "session"
        sess_id = _fingerprint(request.cookies.get(cookie_name), 64)
        ua_full = request.user_agent.string if request.user_agent else None
        ua = _fingerprint(ua_full, 32)

        if actor is None:
            actor = getattr(current_user, "username", None)
            actor_role = actor_role or getattr(current_user, "role", None)
    actor = actor or "system"

    payload = {
        "ts": _ts_to_payload_str(ts), "tenant_id": tenant_id,
        "actor": actor, "actor_role": actor_role,
        "request_id": req_id, "session_id": sess_id,
        "ip": ip, "ua": ua, "method": method, "path": path,
        "action": action, "target_type": target_type, "target_id": target_id,
        "outcome": outcome, "status": status, "error_code": error_code,
        "extra": _clean_extra(extra or {}),
        "schema_version": SCHEMA_VERSION,
        "key_id": SIGNING_KEY_ID,
    }

    with _CHAIN_LOCK, session_scope() as s:
        prev = _latest_hash(s)
        h = _compute_hash(prev, payload)
        s.add(AuditLog(
            ts=ts, tenant_id=tenant_id,
            actor=actor, actor_role=actor_role,
            request_id=req_id, session_id=sess_id,
            ip=ip, ua_fingerprint=ua,
            method=method, path=path,
            action=action, target_type=target_type, target_id=target_id,
            outcome=outcome, status=status, error_code=error_code,
            extra=payload["extra"],
            prev_hash=prev, hash=h, signature=_sign(h),
            schema_version=SCHEMA_VERSION, key_id=SIGNING_KEY_ID,
        ))


def list_audit(tenant_id: str | None = None, limit: int = 500) -> list[dict]:
    with session_scope() as s:
        q = select(AuditLog).order_by(AuditLog.id.desc()).limit(limit)
        if tenant_id is not None:
            q = q.where(AuditLog.tenant_id == tenant_id)
        rows = s.execute(q).scalars().all()
        return [
            {
                "id": r.id,
                "ts": r.ts,
                "tenant_id": r.tenant_id,
                "actor": r.actor,
                "actor_role": r.actor_role,
                "action": r.action,
                "target": (f"{r.target_type}:{r.target_id}"
                           if (r.target_type or r.target_id) else None),
                "status": r.status,
                "outcome": r.outcome,
                "error_code": r.error_code,
                "extra": r.extra or {},
            }
            for r in rows
        ]


def export_csv(tenant_id: str | None = None) -> tuple[str, str]:
    import io
    import csv
    with session_scope() as s:
        q = select(AuditLog).order_by(AuditLog.id.desc())
        if tenant_id is not None:
            q = q.where(AuditLog.tenant_id == tenant_id)
        rows = s.execute(q).scalars().all()
        data = [(
            r.id, r.ts, r.tenant_id, r.actor, r.actor_role, r.ip,
            r.method, r.path, r.action, r.target_type, r.target_id,
            r.status, r.outcome, r.error_code, r.request_id,
            r.schema_version, r.prev_hash, r.hash, r.signature, r.key_id,
            json.dumps(r.extra or {}, sort_keys=True),
        ) for r in rows]

    out = io.StringIO()
    w = csv.writer(out)
    w.writerow([
        "id", "ts", "tenant_id", "actor", "actor_role", "ip", "method", "path",
        "action", "target_type", "target_id", "status", "outcome", "error_code",
        "request_id", "schema_version", "prev_hash", "hash", "signature",
        "key_id", "extra",
    ])
    w.writerows(data)
    out.seek(0)
    return ("audit_export.csv", out.read())
