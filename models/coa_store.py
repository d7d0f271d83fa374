# models/coa_store.py
from __future__ import annotations
import re
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from models.base import session_scope
from models.ledger import Account, JournalLine, ACCOUNT_TYPES
from services.errors import NotFoundError, ValidationError

_UPDATABLE = {"name", "description", "category", "parent_id", "type", "is_active"}
_DUP_CODE_RX = re.compile(r"uq_account_tenant_code|accounts\.code")


def default_chart() -> list[dict]:
    return [
        {"code": "1000", "name": "Cash on Hand",        "type": "asset",     "category": "cash"},
        {"code": "1010", "name": "Operating Bank",      "type": "asset",     "category": "bank"},
        {"code": "1200", "name": "Accounts Receivable", "type": "asset",     "category": "receivable"},
        {"code": "2100", "name": "Accounts Payable",    "type": "liability", "category": "payable"},
        {"code": "2200", "name": "Tax Payable",         "type": "liability", "category": None},
        {"code": "3000", "name": "Owner's Equity",      "type": "equity",    "category": None},
        {"code": "3100", "name": "Retained Earnings",   "type": "equity",    "category": None},
        {"code": "4000", "name": "Sales Revenue",       "type": "revenue",   "category": None},
        {"code": "5000", "name": "Cost of Goods Sold",  "type": "expense",   "category": "cogs"},
        {"code": "6000", "name": "Operating Expenses",  "type": "expense",   "category": None},
    ]


def _to_dict(a: Account) -> dict:
    return {
        "id": a.id,
        "tenant_id": a.tenant_id,
        "code": a.code,
        "name": a.name,
        "type": a.type,
        "category": a.category,
        "description": a.description,
        "parent_id": a.parent_id,
        "is_active": a.is_active,
        "balance": Decimal(a.balance or 0).quantize(Decimal("0.01")),
    }


def _norm_category(c: str | None) -> str | None:
    c = (c or "").strip().lower()
    return c or None


def _load(s, tenant_id: str, account_id: int) -> Account:
    a = s.get(Account, account_id)
    if a is None or a.tenant_id != tenant_id:
        raise NotFoundError(f"account {account_id} not found")
    return a


def _check_parent(s, tenant_id: str, account_id: int | None, parent_id: int | None) -> None:
    """Parent must exist in the same tenant and must not be a descendant of the account."""
    if parent_id is None:
        return
    parent = _load(s, tenant_id, parent_id)
    seen = set()
    node = parent
    while node is not None:
        if account_id is not None and node.id == account_id:
            raise ValidationError("account hierarchy would contain a cycle")
        if node.id in seen:
            raise ValidationError("account hierarchy already contains a cycle")
        seen.add(node.id)
        node = _load(s, tenant_id, node.parent_id) if node.parent_id else None


def is_referenced(s, account_id: int) -> bool:
    n = s.execute(
        select(func.count(JournalLine.id)).where(JournalLine.account_id == account_id)
    ).scalar_one()
    return n > 0


def _code_taken(s, tenant_id: str, code: str) -> bool:
    return s.execute(
        select(Account.id).where(Account.tenant_id == tenant_id, Account.code == code)
    ).first() is not None


def create_account(tenant_id: str, code: str, name: str, type: str, *,
                   parent_id: int | None = None, category: str | None = None,
                   description: str | None = None) -> dict:
    code = (code or "").strip()
    name = (name or "").strip()
    type = (type or "").strip().lower()
    if not code or not name:
        raise ValidationError("account code and name are required")
    if type not in ACCOUNT_TYPES:
        raise ValidationError(f"account type must be one of {', '.join(ACCOUNT_TYPES)}")
    try:
        with session_scope() as s:
            if _code_taken(s, tenant_id, code):
                raise ValidationError(f"account code {code} already exists")
            _check_parent(s, tenant_id, None, parent_id)
            a = Account(tenant_id=tenant_id, code=code, name=name, type=type,
                        category=_norm_category(category), description=description,
                        parent_id=parent_id, is_active=True, balance=Decimal("0"))
            s.add(a)
            s.flush()
            return _to_dict(a)
    except IntegrityError as exc:
        # a concurrent create of the same code won the insert
        if _DUP_CODE_RX.search(str(exc.orig)):
            raise ValidationError(f"account code {code} already exists") from exc
        raise


def update_account(tenant_id: str, account_id: int, **fields) -> dict:
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValidationError(f"cannot update account fields: {', '.join(sorted(unknown))}")
    with session_scope() as s:
        a = _load(s, tenant_id, account_id)
        if "type" in fields:
            new_type = (fields["type"] or "").strip().lower()
            if new_type not in ACCOUNT_TYPES:
                raise ValidationError(f"account type must be one of {', '.join(ACCOUNT_TYPES)}")
            if new_type != a.type and is_referenced(s, a.id):
                raise ValidationError(
                    f"account {a.code} has journal lines; its type cannot change")
            a.type = new_type
        if "parent_id" in fields:
            _check_parent(s, tenant_id, a.id, fields["parent_id"])
            a.parent_id = fields["parent_id"]
        if "name" in fields:
            if not (fields["name"] or "").strip():
                raise ValidationError("account name is required")
            a.name = fields["name"].strip()
        if "category" in fields:
            a.category = _norm_category(fields["category"])
        if "description" in fields:
            a.description = fields["description"]
        if "is_active" in fields:
            a.is_active = bool(fields["is_active"])
        s.flush()
        return _to_dict(a)


def deactivate_account(tenant_id: str, account_id: int) -> dict:
    return update_account(tenant_id, account_id, is_active=False)


def get_account(tenant_id: str, account_id: int) -> dict:
    with session_scope() as s:
        return _to_dict(_load(s, tenant_id, account_id))


def find_account(tenant_id: str, code: str) -> dict | None:
    with session_scope() as s:
        a = s.execute(
            select(Account).where(Account.tenant_id == tenant_id, Account.code == code)
        ).scalar_one_or_none()
        return _to_dict(a) if a else None


def list_accounts(tenant_id: str, include_inactive: bool = False) -> list[dict]:
    with session_scope() as s:
        q = select(Account).where(Account.tenant_id == tenant_id)
        if not include_inactive:
            q = q.where(Account.is_active.is_(True))
        rows = s.execute(q.order_by(Account.code)).scalars().all()
        return [_to_dict(a) for a in rows]


def seed_default_chart(tenant_id: str) -> int:
    """Create the starter chart for a tenant; codes that already exist are left alone."""
    created = 0
    with session_scope() as s:
        have = set(s.execute(
            select(Account.code).where(Account.tenant_id == tenant_id)
        ).scalars().all())
        for acc in default_chart():
            if acc["code"] in have:
                continue
            s.add(Account(tenant_id=tenant_id, is_active=True, balance=Decimal("0"), **acc))
            created += 1
    return created
