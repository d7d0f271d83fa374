"""ledger initial schema

Revision ID: 3a1c9e07d2b4
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3a1c9e07d2b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TS = sa.DateTime(timezone=True)
MONEY = sa.Numeric(18, 2)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("username", sa.String(64), primary_key=True),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("role in ('admin','user')", name="ck_users_role"),
    )
    op.create_index("idx_users_tenant", "users", ["tenant_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ts", TS, nullable=False),
        sa.Column("tenant_id", sa.String(64)),
        sa.Column("actor", sa.String(128)),
        sa.Column("actor_role", sa.String(32)),
        sa.Column("request_id", sa.String(64)),
        sa.Column("session_id", sa.String(64)),
        sa.Column("ip", sa.String(64)),
        sa.Column("ua_fingerprint", sa.String(64)),
        sa.Column("method", sa.String(8)),
        sa.Column("path", sa.String(512)),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("target_type", sa.String(32)),
        sa.Column("target_id", sa.String(128)),
        sa.Column("outcome", sa.String(16)),
        sa.Column("status", sa.Integer()),
        sa.Column("error_code", sa.String(64)),
        sa.Column("extra", sa.JSON()),
        sa.Column("prev_hash", sa.String(128)),
        sa.Column("hash", sa.String(128)),
        sa.Column("signature", sa.String(128)),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("key_id", sa.String(16)),
        sa.CheckConstraint(
            "outcome in ('success','failure','partial','blocked','noop') or outcome is null",
            name="ck_audit_outcome"),
    )
    op.create_index("idx_audit_ts", "audit_log", ["ts"])
    op.create_index("idx_audit_tenant", "audit_log", ["tenant_id"])
    op.create_index("idx_audit_actor", "audit_log", ["actor"])
    op.create_index("idx_audit_action", "audit_log", ["action"])
    op.create_index("idx_audit_target", "audit_log", ["target_type", "target_id"])

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("category", sa.String(32)),
        sa.Column("description", sa.Text()),
        sa.Column("parent_id", sa.Integer(),
                  sa.ForeignKey("accounts.id", ondelete="RESTRICT")),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("balance", MONEY, nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
        sa.CheckConstraint(
            "type in ('asset','liability','equity','revenue','expense')",
            name="ck_account_type"),
        sa.CheckConstraint("parent_id is null or parent_id <> id",
                           name="ck_account_not_own_parent"),
    )
    op.create_index("idx_account_tenant_type", "accounts", ["tenant_id", "type"])
    op.create_index("idx_account_tenant_category", "accounts", ["tenant_id", "category"])

    op.create_table(
        "fiscal_periods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("period", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        sa.Column("closed_at", TS),
        sa.Column("closed_by", sa.String(128)),
        sa.Column("locked_at", TS),
        sa.Column("locked_by", sa.String(128)),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("tenant_id", "year", "period",
                            name="uq_period_tenant_year_period"),
        sa.CheckConstraint("status in ('open','closed','locked')", name="ck_period_status"),
        sa.CheckConstraint("period >= 1 and period <= 12", name="ck_period_number"),
        sa.CheckConstraint("end_date > start_date", name="ck_period_range"),
        sa.CheckConstraint(
            "status = 'open' or (closed_by is not null and closed_at is not null)",
            name="ck_period_closed_meta"),
    )
    op.create_index("idx_period_tenant_range", "fiscal_periods",
                    ["tenant_id", "start_date", "end_date"])

    op.create_table(
        "entry_sequences",
        sa.Column("tenant_id", sa.String(64), primary_key=True),
        sa.Column("year", sa.Integer(), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "journal_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("entry_number", sa.String(32)),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("posting_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("reference_type", sa.String(16)),
        sa.Column("reference_id", sa.String(64)),
        sa.Column("notes", sa.Text()),
        sa.Column("total_debit", MONEY, nullable=False),
        sa.Column("total_credit", MONEY, nullable=False),
        sa.Column("posted", sa.Boolean(), nullable=False),
        sa.Column("posted_by", sa.String(128)),
        sa.Column("posted_at", TS),
        sa.Column("reversed", sa.Boolean(), nullable=False),
        sa.Column("reversal_of", sa.Integer(),
                  sa.ForeignKey("journal_entries.id", ondelete="RESTRICT")),
        sa.Column("created_by", sa.String(128)),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.Column("deleted_at", TS),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("tenant_id", "entry_number", name="uq_entry_tenant_number"),
        sa.UniqueConstraint("reversal_of", name="uq_entry_reversal_of"),
        sa.CheckConstraint(
            "(posted = false and posted_by is null and posted_at is null) or "
            "(posted = true and posted_by is not null and posted_at is not null)",
            name="ck_entry_posted_meta"),
        sa.CheckConstraint("posted = true or entry_number is null",
                           name="ck_entry_number_on_post"),
        sa.CheckConstraint("reversed = false or posted = true",
                           name="ck_entry_reversed_posted"),
        sa.CheckConstraint("deleted_at is null or posted = false",
                           name="ck_entry_delete_draft_only"),
        sa.CheckConstraint(
            "reference_type is null or reference_type in "
            "('manual','invoice','bill','payment','payroll','adjustment','reversal')",
            name="ck_entry_reference_type"),
    )
    op.create_index("idx_entry_tenant_posting", "journal_entries", ["tenant_id", "posting_date"])
    op.create_index("idx_entry_tenant_posted", "journal_entries", ["tenant_id", "posted"])
    op.create_index("idx_entry_reference", "journal_entries", ["reference_type", "reference_id"])

    op.create_table(
        "journal_lines",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entry_id", sa.Integer(),
                  sa.ForeignKey("journal_entries.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(),
                  sa.ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("debit", MONEY, nullable=False),
        sa.Column("credit", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(18, 8), nullable=False),
        sa.Column("base_amount", MONEY, nullable=False),
        sa.Column("memo", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("(debit > 0 and credit = 0) or (credit > 0 and debit = 0)",
                           name="ck_line_one_side"),
        sa.CheckConstraint("exchange_rate > 0", name="ck_line_rate_positive"),
    )
    op.create_index("idx_line_entry", "journal_lines", ["entry_id"])
    op.create_index("idx_line_account", "journal_lines", ["account_id"])
    op.create_index("idx_line_tenant", "journal_lines", ["tenant_id"])

    op.create_table(
        "reconciliation_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("reconciliation_type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("alerts_created", sa.Integer(), nullable=False),
        sa.Column("records_checked", sa.Integer(), nullable=False),
        sa.Column("variance_found", MONEY, nullable=False),
        sa.Column("run_by", sa.String(128), nullable=False),
        sa.Column("run_at", TS, nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("details", sa.JSON()),
        sa.CheckConstraint("status in ('success','warning','failed')",
                           name="ck_recon_run_status"),
    )
    op.create_index("idx_recon_run_tenant_at", "reconciliation_runs", ["tenant_id", "run_at"])

    op.create_table(
        "reconciliation_alerts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("run_id", sa.Integer(),
                  sa.ForeignKey("reconciliation_runs.id", ondelete="SET NULL")),
        sa.Column("alert_type", sa.String(32), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("expected_value", MONEY),
        sa.Column("actual_value", MONEY),
        sa.Column("variance", MONEY),
        sa.Column("variance_percentage", sa.Numeric(9, 2)),
        sa.Column("details", sa.JSON()),
        sa.Column("detected_at", TS, nullable=False),
        sa.Column("resolved_at", TS),
        sa.Column("resolved_by", sa.String(128)),
        sa.Column("resolution_notes", sa.Text()),
        sa.CheckConstraint("severity in ('critical','high','medium','low')",
                           name="ck_alert_severity"),
        sa.CheckConstraint(
            "(resolved_at is null and resolved_by is null) or "
            "(resolved_at is not null and resolved_by is not null)",
            name="ck_alert_resolution_meta"),
    )
    op.create_index("idx_alert_tenant_open", "reconciliation_alerts", ["tenant_id", "resolved_at"])
    op.create_index("idx_alert_type", "reconciliation_alerts", ["alert_type"])

    for table, date_col, statuses in (
        ("invoices", "issue_date", "'draft','sent','overdue','paid','void'"),
        ("bills", "bill_date", "'draft','approved','pending_payment','paid','void'"),
    ):
        party = "customer" if table == "invoices" else "vendor"
        short = table[:-1]
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("tenant_id", sa.String(64), nullable=False),
            sa.Column("number", sa.String(32), nullable=False),
            sa.Column(party, sa.String(255), nullable=False),
            sa.Column(date_col, sa.Date(), nullable=False),
            sa.Column("due_date", sa.Date()),
            sa.Column("currency", sa.String(3), nullable=False),
            sa.Column("total_amount", MONEY, nullable=False),
            sa.Column("status", sa.String(16), nullable=False),
            sa.Column("notes", sa.Text()),
            sa.Column("created_at", TS, nullable=False),
            sa.Column("updated_at", TS, nullable=False),
            sa.UniqueConstraint("tenant_id", "number", name=f"uq_{short}_tenant_number"),
            sa.CheckConstraint("total_amount >= 0", name=f"ck_{short}_amount"),
            sa.CheckConstraint(f"status in ({statuses})", name=f"ck_{short}_status"),
        )
        op.create_index(f"idx_{short}_tenant_status", table, ["tenant_id", "status"])


def downgrade() -> None:
    """Downgrade schema."""
    for table in ("bills", "invoices", "reconciliation_alerts", "reconciliation_runs",
                  "journal_lines", "journal_entries", "entry_sequences",
                  "fiscal_periods", "accounts", "audit_log", "users"):
        op.drop_table(table)
