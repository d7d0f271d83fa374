# models/subledger.py
from __future__ import annotations
from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    String, Integer, Numeric, Date, DateTime, Text,
    UniqueConstraint, CheckConstraint, Index
)
from models.base import Base

INVOICE_STATUSES = ("draft", "sent", "overdue", "paid", "void")
BILL_STATUSES = ("draft", "approved", "pending_payment", "paid", "void")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Invoice(Base):
    __tablename__ = "invoices"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    number: Mapped[str] = mapped_column(String(32), nullable=False)
    customer: Mapped[str] = mapped_column(String(255), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD")
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="draft")
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("tenant_id", "number", name="uq_invoice_tenant_number"),
        CheckConstraint("total_amount >= 0", name="ck_invoice_amount"),
        CheckConstraint(
            "status in ('draft','sent','overdue','paid','void')", name="ck_invoice_status"),
        Index("idx_invoice_tenant_status", "tenant_id", "status"),
    )


class Bill(Base):
    __tablename__ = "bills"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    number: Mapped[str] = mapped_column(String(32), nullable=False)
    vendor: Mapped[str] = mapped_column(String(255), nullable=False)
    bill_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD")
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="draft")
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("tenant_id", "number", name="uq_bill_tenant_number"),
        CheckConstraint("total_amount >= 0", name="ck_bill_amount"),
        CheckConstraint(
            "status in ('draft','approved','pending_payment','paid','void')", name="ck_bill_status"),
        Index("idx_bill_tenant_status", "tenant_id", "status"),
    )
