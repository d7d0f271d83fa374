# models/ledger.py
from __future__ import annotations
from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    JSON, Boolean, String, Integer, Numeric, Date, DateTime, Text, ForeignKey,
    UniqueConstraint, CheckConstraint, Index
)
from models.base import Base


ACCOUNT_TYPES = ("asset", "liability", "equity", "revenue", "expense")
DEBIT_NORMAL = ("asset", "expense")
PERIOD_STATUSES = ("open", "closed", "locked")
REFERENCE_TYPES = ("manual", "invoice", "bill", "payment",
                   "payroll", "adjustment", "reversal")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    __tablename__ = "accounts"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # asset|liability|equity|revenue|expense
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    # cash|bank|receivable|payable|cogs|...
    category: Mapped[str | None] = mapped_column(String(32))
    description: Mapped[str | None] = mapped_column(Text)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="RESTRICT"))
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True)
    # cached, normal-signed; written only by the posting engine
    balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
        CheckConstraint(
            "type in ('asset','liability','equity','revenue','expense')", name="ck_account_type"),
        CheckConstraint("parent_id is null or parent_id <> id",
                        name="ck_account_not_own_parent"),
        Index("idx_account_tenant_type", "tenant_id", "type"),
        Index("idx_account_tenant_category", "tenant_id", "category"),
    )

    @property
    def debit_normal(self) -> bool:
        return self.type in DEBIT_NORMAL


class FiscalPeriod(Base):
    __tablename__ = "fiscal_periods"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)  # 1..12
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="open")  # open|closed|locked
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_by: Mapped[str | None] = mapped_column(String(128))
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    locked_by: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "year", "period",
                         name="uq_period_tenant_year_period"),
        CheckConstraint("status in ('open','closed','locked')",
                        name="ck_period_status"),
        CheckConstraint("period >= 1 and period <= 12",
                        name="ck_period_number"),
        CheckConstraint("end_date > start_date", name="ck_period_range"),
        CheckConstraint(
            "status = 'open' or (closed_by is not null and closed_at is not null)",
            name="ck_period_closed_meta"),
        Index("idx_period_tenant_range", "tenant_id",
              "start_date", "end_date"),
    )


class EntrySequence(Base):
    __tablename__ = "entry_sequences"
    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_value: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0)


class JournalEntry(Base):
    __tablename__ = "journal_entries"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # JE-YYYY-NNNN, assigned when posted
    entry_number: Mapped[str | None] = mapped_column(String(32))
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    posting_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(16))
    reference_id: Mapped[str | None] = mapped_column(String(64))
    notes: Mapped[str | None] = mapped_column(Text)

    total_debit: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    total_credit: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))

    posted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False)
    posted_by: Mapped[str | None] = mapped_column(String(128))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reversed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False)
    reversal_of: Mapped[int | None] = mapped_column(
        ForeignKey("journal_entries.id", ondelete="RESTRICT"))

    created_by: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry", order_by="JournalLine.line_no",
        cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "entry_number",
                         name="uq_entry_tenant_number"),
        # one reversal per original
        UniqueConstraint("reversal_of", name="uq_entry_reversal_of"),
        CheckConstraint(
            "(posted = false and posted_by is null and posted_at is null) or "
            "(posted = true and posted_by is not null and posted_at is not null)",
            name="ck_entry_posted_meta"),
        CheckConstraint("posted = true or entry_number is null",
                        name="ck_entry_number_on_post"),
        CheckConstraint("reversed = false or posted = true",
                        name="ck_entry_reversed_posted"),
        CheckConstraint("deleted_at is null or posted = false",
                        name="ck_entry_delete_draft_only"),
        CheckConstraint(
            "reference_type is null or reference_type in "
            "('manual','invoice','bill','payment','payroll','adjustment','reversal')",
            name="ck_entry_reference_type"),
        Index("idx_entry_tenant_posting", "tenant_id", "posting_date"),
        Index("idx_entry_tenant_posted", "tenant_id", "posted"),
        Index("idx_entry_reference", "reference_type", "reference_id"),
    )


class JournalLine(Base):
    __tablename__ = "journal_lines"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey(
        "journal_entries.id", ondelete="CASCADE"), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    account_id: Mapped[int] = mapped_column(ForeignKey(
        "accounts.id", ondelete="RESTRICT"), nullable=False)
    debit: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD")
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), nullable=False, default=Decimal("1"))
    # (debit or credit) x exchange_rate
    base_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False)
    memo: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now)

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")

    __table_args__ = (
        CheckConstraint(
            "(debit > 0 and credit = 0) or (credit > 0 and debit = 0)",
            name="ck_line_one_side"),
        CheckConstraint("exchange_rate > 0", name="ck_line_rate_positive"),
        Index("idx_line_entry", "entry_id"),
        Index("idx_line_account", "account_id"),
        Index("idx_line_tenant", "tenant_id"),
    )


class ReconciliationAlert(Base):
    __tablename__ = "reconciliation_alerts"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    run_id: Mapped[int | None] = mapped_column(
        ForeignKey("reconciliation_runs.id", ondelete="SET NULL"))
    # ar_mismatch|ap_mismatch|...
    alert_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    expected_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    actual_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    variance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    variance_percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(9, 2))
    details: Mapped[dict | None] = mapped_column(JSON)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    resolved_by: Mapped[str | None] = mapped_column(String(128))
    resolution_notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("severity in ('critical','high','medium','low')",
                        name="ck_alert_severity"),
        CheckConstraint(
            "(resolved_at is null and resolved_by is null) or "
            "(resolved_at is not null and resolved_by is not null)",
            name="ck_alert_resolution_meta"),
        Index("idx_alert_tenant_open", "tenant_id", "resolved_at"),
        Index("idx_alert_type", "alert_type"),
    )


class ReconciliationRun(Base):
    __tablename__ = "reconciliation_runs"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reconciliation_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default="full")
    # success|warning|failed
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    alerts_created: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0)
    records_checked: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0)
    variance_found: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    run_by: Mapped[str] = mapped_column(String(128), nullable=False)
    run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now)
    duration_ms: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0)
    details: Mapped[dict | None] = mapped_column(JSON)

    __table_args__ = (
        CheckConstraint("status in ('success','warning','failed')",
                        name="ck_recon_run_status"),
        Index("idx_recon_run_tenant_at", "tenant_id", "run_at"),
    )
