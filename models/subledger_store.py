# models/subledger_store.py
from __future__ import annotations

from sqlalchemy import select

from models.base import session_scope
from models.subledger import Invoice, Bill, INVOICE_STATUSES, BILL_STATUSES
from services.datetimex import to_date, to_date_or_none
from services.errors import NotFoundError, ValidationError
from services.fiscal_calendar import assert_open
from services.money import money
from services.settings import base_currency
from services.txn import ledger_scope


def _invoice_dict(i: Invoice) -> dict:
    return {
        "id": i.id, "tenant_id": i.tenant_id, "number": i.number,
        "customer": i.customer, "issue_date": i.issue_date, "due_date": i.due_date,
        "currency": i.currency, "total_amount": money(i.total_amount),
        "status": i.status,
    }


def _bill_dict(b: Bill) -> dict:
    return {
        "id": b.id, "tenant_id": b.tenant_id, "number": b.number,
        "vendor": b.vendor, "bill_date": b.bill_date, "due_date": b.due_date,
        "currency": b.currency, "total_amount": money(b.total_amount),
        "status": b.status,
    }


def _check_amount(total_amount):
    amt = money(total_amount)
    if amt < 0:
        raise ValidationError("total_amount cannot be negative")
    return amt


def create_invoice(tenant_id: str, number: str, customer: str, issue_date, total_amount,
                   *, due_date=None, status: str = "draft", currency: str | None = None) -> dict:
    if status not in INVOICE_STATUSES:
        raise ValidationError(f"invoice status must be one of {', '.join(INVOICE_STATUSES)}")
    if not number or not customer:
        raise ValidationError("invoice number and customer are required")
    issue_date = to_date(issue_date, "issue_date")
    with ledger_scope() as s:
        assert_open(s, tenant_id, issue_date, what="invoice")
        dup = s.execute(select(Invoice.id).where(
            Invoice.tenant_id == tenant_id, Invoice.number == number)).first()
        if dup:
            raise ValidationError(f"invoice {number} already exists")
        i = Invoice(tenant_id=tenant_id, number=number, customer=customer,
                    issue_date=issue_date, due_date=to_date_or_none(due_date, "due_date"),
                    currency=(currency or base_currency()).upper(),
                    total_amount=_check_amount(total_amount), status=status)
        s.add(i)
        s.flush()
        return _invoice_dict(i)


def set_invoice_status(tenant_id: str, invoice_id: int, status: str) -> dict:
    if status not in INVOICE_STATUSES:
        raise ValidationError(f"invoice status must be one of {', '.join(INVOICE_STATUSES)}")
    with ledger_scope() as s:
        i = s.get(Invoice, invoice_id)
        if i is None or i.tenant_id != tenant_id:
            raise NotFoundError(f"invoice {invoice_id} not found")
        assert_open(s, tenant_id, i.issue_date, what="invoice")
        i.status = status
        s.flush()
        return _invoice_dict(i)


def list_invoices(tenant_id: str, statuses: tuple[str, ...] | None = None) -> list[dict]:
    with session_scope() as s:
        q = select(Invoice).where(Invoice.tenant_id == tenant_id)
        if statuses:
            q = q.where(Invoice.status.in_(statuses))
        return [_invoice_dict(i) for i in s.execute(q.order_by(Invoice.id)).scalars()]


def create_bill(tenant_id: str, number: str, vendor: str, bill_date, total_amount,
                *, due_date=None, status: str = "draft", currency: str | None = None) -> dict:
    if status not in BILL_STATUSES:
        raise ValidationError(f"bill status must be one of {', '.join(BILL_STATUSES)}")
    if not number or not vendor:
        raise ValidationError("bill number and vendor are required")
    bill_date = to_date(bill_date, "bill_date")
    with ledger_scope() as s:
        assert_open(s, tenant_id, bill_date, what="bill")
        dup = s.execute(select(Bill.id).where(
            Bill.tenant_id == tenant_id, Bill.number == number)).first()
        if dup:
            raise ValidationError(f"bill {number} already exists")
        b = Bill(tenant_id=tenant_id, number=number, vendor=vendor,
                 bill_date=bill_date, due_date=to_date_or_none(due_date, "due_date"),
                 currency=(currency or base_currency()).upper(),
                 total_amount=_check_amount(total_amount), status=status)
        s.add(b)
        s.flush()
        return _bill_dict(b)


def set_bill_status(tenant_id: str, bill_id: int, status: str) -> dict:
    if status not in BILL_STATUSES:
        raise ValidationError(f"bill status must be one of {', '.join(BILL_STATUSES)}")
    with ledger_scope() as s:
        b = s.get(Bill, bill_id)
        if b is None or b.tenant_id != tenant_id:
            raise NotFoundError(f"bill {bill_id} not found")
        assert_open(s, tenant_id, b.bill_date, what="bill")
        b.status = status
        s.flush()
        return _bill_dict(b)


def list_bills(tenant_id: str, statuses: tuple[str, ...] | None = None) -> list[dict]:
    with session_scope() as s:
        q = select(Bill).where(Bill.tenant_id == tenant_id)
        if statuses:
            q = q.where(Bill.status.in_(statuses))
        return [_bill_dict(b) for b in s.execute(q.order_by(Bill.id)).scalars()]
