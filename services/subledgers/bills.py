# services/subledgers/bills.py
from __future__ import annotations
from decimal import Decimal

from sqlalchemy import select, func

from models.base import session_scope
from models.subledger import Bill
from services.money import money

OPEN_STATUSES = ("approved", "pending_payment")


class BillSubledger:
    """Accounts payable: approved vendor bills awaiting payment."""
    name = "accounts_payable"
    alert_type = "ap_mismatch"
    control_category = "payable"
    label = "Accounts Payable"

    def _open(self, tenant_id: str):
        return (Bill.tenant_id == tenant_id, Bill.status.in_(OPEN_STATUSES))

    def subledger_total(self, tenant_id: str) -> Decimal:
        with session_scope() as s:
            total = s.execute(
                select(func.coalesce(func.sum(Bill.total_amount), 0))
                .where(*self._open(tenant_id))
            ).scalar_one()
        return money(total)

    def records_checked(self, tenant_id: str) -> int:
        with session_scope() as s:
            return s.execute(
                select(func.count(Bill.id)).where(*self._open(tenant_id))
            ).scalar_one()
