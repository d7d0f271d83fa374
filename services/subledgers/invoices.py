# services/subledgers/invoices.py
from __future__ import annotations
from decimal import Decimal

from sqlalchemy import select, func

from models.base import session_scope
from models.subledger import Invoice
from services.money import money

OPEN_STATUSES = ("sent", "overdue")


class InvoiceSubledger:
    """Accounts receivable: invoices sent to customers and not yet settled."""
    name = "accounts_receivable"
    alert_type = "ar_mismatch"
    control_category = "receivable"
    label = "Accounts Receivable"

    def _open(self, tenant_id: str):
        return (Invoice.tenant_id == tenant_id, Invoice.status.in_(OPEN_STATUSES))

    def subledger_total(self, tenant_id: str) -> Decimal:
        with session_scope() as s:
            total = s.execute(
                select(func.coalesce(func.sum(Invoice.total_amount), 0))
                .where(*self._open(tenant_id))
            ).scalar_one()
        return money(total)

    def records_checked(self, tenant_id: str) -> int:
        with session_scope() as s:
            return s.execute(
                select(func.count(Invoice.id)).where(*self._open(tenant_id))
            ).scalar_one()
