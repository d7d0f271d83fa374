# models/schema.py
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON, String, Text, Integer, DateTime, CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class User(Base):
    __tablename__ = "users"
    username: Mapped[str] = mapped_column(String(64), primary_key=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(
        String(16), nullable=False)  # ('admin','user')
    # every ledger call made on behalf of this user is scoped to this tenant
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        CheckConstraint("role in ('admin','user')", name="ck_users_role"),
        Index("idx_users_tenant", "tenant_id"),
    )


class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(String(64))

    # Actor & request context
    actor: Mapped[str | None] = mapped_column(String(128))
    # 'admin'|'user'|...
    actor_role: Mapped[str | None] = mapped_column(String(32))
    request_id: Mapped[str | None] = mapped_column(
        String(64))     # e.g., per-request UUID
    session_id: Mapped[str | None] = mapped_column(String(64))

    ip: Mapped[str | None] = mapped_column(
        String(64))             # anonymized if configured
    ua_fingerprint: Mapped[str | None] = mapped_column(String(64))  # hashed UA

    method: Mapped[str | None] = mapped_column(String(8))
    path: Mapped[str | None] = mapped_column(String(512))

    # Event semantics
    action: Mapped[str] = mapped_column(
        String(64), nullable=False)  # e.g. 'gl.entry.posted'
    target_type: Mapped[str | None] = mapped_column(String(32))
    target_id: Mapped[str | None] = mapped_column(String(128))
    outcome: Mapped[str | None] = mapped_column(
        String(16))          # 'success'|'failure'|'blocked'
    status: Mapped[int | None] = mapped_column(Integer)
    error_code: Mapped[str | None] = mapped_column(String(64))

    # Structured details (small, redacted)
    extra: Mapped[dict | None] = mapped_column(JSON)

    # Tamper-evident chain
    prev_hash: Mapped[str | None] = mapped_column(String(128))
    hash: Mapped[str | None] = mapped_column(String(128))
    signature: Mapped[str | None] = mapped_column(
        String(128))       # HMAC(hash, SECRET)
    schema_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3)
    key_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "outcome in ('success','failure','partial','blocked','noop') or outcome is null", name="ck_audit_outcome"),
        Index("idx_audit_ts", "ts"),
        Index("idx_audit_tenant", "tenant_id"),
        Index("idx_audit_actor", "actor"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_target", "target_type", "target_id"),
    )
