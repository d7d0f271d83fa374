# models/journal_store.py
"""
Journal store: draft entries and their lines.

Every mutation of an entry or of one of its lines goes through
``_guarded_entry`` which refuses posted or deleted entries and checks the
fiscal calendar before anything is written, and ends in ``_touch`` which
rejects a draft left non-empty and unbalanced. Posting itself lives in
services/gl_posting.py.
"""
from __future__ import annotations
import logging
import re
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from models.base import session_scope
from models.ledger import Account, JournalEntry, JournalLine, REFERENCE_TYPES
from services.datetimex import now_utc, to_date, to_date_or_none
from services.errors import (
    ImmutableEntryError, NotFoundError, PermissionDeniedError,
    UnbalancedEntryError, ValidationError,
)
from services.fiscal_calendar import assert_open
from services.money import D, money
from services.settings import base_currency
from services.txn import ledger_scope

log = logging.getLogger(__name__)

_ENTRY_FIELDS = {"entry_date", "posting_date", "description",
                 "reference_type", "reference_id", "notes"}
_LINE_FIELDS = {"account_id", "debit", "credit",
                "memo", "currency", "exchange_rate"}
_CCY_RX = re.compile(r"^[A-Z]{3}$")
ZERO = Decimal("0.00")


def line_to_dict(l: JournalLine) -> dict:
    return {
        "id": l.id,
        "entry_id": l.entry_id,
        "line_no": l.line_no,
        "account_id": l.account_id,
        "debit": money(l.debit),
        "credit": money(l.credit),
        "currency": l.currency,
        "exchange_rate": D(l.exchange_rate),
        "base_amount": money(l.base_amount),
        "memo": l.memo,
    }


def entry_to_dict(e: JournalEntry, with_lines: bool = True) -> dict:
    out = {
        "id": e.id,
        "tenant_id": e.tenant_id,
        "entry_number": e.entry_number,
        "entry_date": e.entry_date,
        "posting_date": e.posting_date,
        "description": e.description,
        "reference_type": e.reference_type,
        "reference_id": e.reference_id,
        "notes": e.notes,
        "total_debit": money(e.total_debit),
        "total_credit": money(e.total_credit),
        "posted": e.posted,
        "posted_by": e.posted_by,
        "posted_at": e.posted_at,
        "reversed": e.reversed,
        "reversal_of": e.reversal_of,
        "created_by": e.created_by,
        "created_at": e.created_at,
    }
    if with_lines:
        out["lines"] = [line_to_dict(l) for l in e.lines]
    return out


def load_entry(s, tenant_id: str, entry_id: int, *, for_update: bool = False) -> JournalEntry:
    q = select(JournalEntry).where(
        JournalEntry.id == entry_id,
        JournalEntry.tenant_id == tenant_id,
        JournalEntry.deleted_at.is_(None),
    )
    if for_update:
        q = q.with_for_update()
    e = s.execute(q).scalar_one_or_none()
    if e is None:
        raise NotFoundError(f"journal entry {entry_id} not found")
    return e


def _guarded_entry(s, tenant_id: str, entry_id: int, action: str) -> JournalEntry:
    e = load_entry(s, tenant_id, entry_id, for_update=True)
    if e.posted:
        log.error("tenant=%s refused to %s posted entry %s (%s)",
                  tenant_id, action, e.id, e.entry_number)
        raise ImmutableEntryError(
            f"entry {e.entry_number} is posted; cannot {action}", entry_id=e.id)
    assert_open(s, tenant_id, e.posting_date, what="posting")
    return e


def _load_line(s, tenant_id: str, line_id: int) -> JournalLine:
    l = s.execute(
        select(JournalLine).where(JournalLine.id == line_id,
                                  JournalLine.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if l is None:
        raise NotFoundError(f"journal line {line_id} not found")
    return l


def _amount(x, field: str) -> Decimal:
    v = D(x)
    if not v.is_finite():
        raise ValidationError(f"{field} must be a finite amount")
    if v < 0:
        raise ValidationError(f"{field} cannot be negative")
    return money(v)


def normalize_line(s, tenant_id: str, *, account_id=None, debit=0, credit=0,
                   currency=None, exchange_rate=None, memo=None) -> dict:
    """Validate one line and derive its base-currency amount."""
    debit = _amount(debit, "debit")
    credit = _amount(credit, "credit")
    if debit > 0 and credit > 0:
        raise ValidationError("a line carries either a debit or a credit, not both")
    if debit == 0 and credit == 0:
        raise ValidationError("a line needs a non-zero debit or credit")

    currency = (currency or base_currency()).strip().upper()
    if not _CCY_RX.match(currency):
        raise ValidationError(f"currency must be a 3-letter ISO code: {currency!r}")
    rate = D(exchange_rate if exchange_rate is not None else 1)
    if not rate.is_finite() or rate <= 0:
        raise ValidationError("exchange_rate must be greater than zero")

    try:
        account_id = int(account_id)
    except (TypeError, ValueError):
        raise ValidationError(f"account_id must be an integer: {account_id!r}")
    acc = s.get(Account, account_id)
    if acc is None or acc.tenant_id != tenant_id:
        raise ValidationError(f"account {account_id} does not exist")
    if not acc.is_active:
        raise ValidationError(f"account {acc.code} is inactive")

    return {
        "account_id": account_id,
        "debit": debit,
        "credit": credit,
        "currency": currency,
        "exchange_rate": rate,
        "base_amount": money((debit or credit) * rate),
        "memo": memo,
    }


def _touch(e: JournalEntry) -> None:
    """
    Recompute the entry totals after a mutation. A draft is either empty or
    balanced; anything else raises and the surrounding transaction rolls back.
    """
    e.total_debit = sum((money(l.debit) for l in e.lines), ZERO)
    e.total_credit = sum((money(l.credit) for l in e.lines), ZERO)
    if e.total_debit != e.total_credit:
        raise UnbalancedEntryError(
            f"lines do not balance: debit {e.total_debit} != credit {e.total_credit}",
            total_debit=str(e.total_debit), total_credit=str(e.total_credit))
    # the row is always rewritten so its version moves with line edits
    e.updated_at = now_utc()


def _next_line_no(e: JournalEntry) -> int:
    return max((l.line_no for l in e.lines), default=0) + 1


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------

def _check_reference(reference_type, reference_id):
    if reference_type is not None and reference_type not in REFERENCE_TYPES:
        raise ValidationError(
            f"reference_type must be one of {', '.join(REFERENCE_TYPES)}")
    if reference_id is not None and reference_type is None:
        raise ValidationError("reference_id needs a reference_type")


def create_draft_entry(tenant_id: str, entry_date, description: str,
                       reference_type: str | None = None, reference_id: str | None = None, *,
                       posting_date=None, created_by: str | None = None,
                       notes: str | None = None, lines: list[dict] | None = None) -> int:
    """Create a draft, optionally with its lines; header and lines commit together."""
    if not tenant_id:
        raise ValidationError("tenant_id is required")
    if not (description or "").strip():
        raise ValidationError("description is required")
    _check_reference(reference_type, reference_id)
    entry_date = to_date(entry_date, "entry_date")
    posting_date = to_date_or_none(posting_date, "posting_date") or entry_date

    with ledger_scope() as s:
        assert_open(s, tenant_id, posting_date, what="posting")
        e = JournalEntry(
            tenant_id=tenant_id, entry_date=entry_date, posting_date=posting_date,
            description=description.strip(), reference_type=reference_type,
            reference_id=None if reference_id is None else str(reference_id),
            notes=notes, created_by=created_by, posted=False, reversed=False,
            total_debit=ZERO, total_credit=ZERO,
        )
        s.add(e)
        if lines:
            _append_lines(s, tenant_id, e, lines)
            _touch(e)
        s.flush()
        return e.id


def update_entry(tenant_id: str, entry_id: int, **fields) -> dict:
    unknown = set(fields) - _ENTRY_FIELDS
    if unknown:
        raise ValidationError(f"cannot update entry fields: {', '.join(sorted(unknown))}")
    with ledger_scope() as s:
        e = _guarded_entry(s, tenant_id, entry_id, "edit it")
        if "entry_date" in fields:
            e.entry_date = to_date(fields["entry_date"], "entry_date")
        if "posting_date" in fields:
            new_posting = to_date(fields["posting_date"], "posting_date")
            assert_open(s, tenant_id, new_posting, what="posting")
            e.posting_date = new_posting
        if "description" in fields:
            if not (fields["description"] or "").strip():
                raise ValidationError("description is required")
            e.description = fields["description"].strip()
        if "reference_type" in fields or "reference_id" in fields:
            rt = fields.get("reference_type", e.reference_type)
            rid = fields.get("reference_id", e.reference_id)
            _check_reference(rt, rid)
            e.reference_type, e.reference_id = rt, (None if rid is None else str(rid))
        if "notes" in fields:
            e.notes = fields["notes"]
        _touch(e)
        s.flush()
        return entry_to_dict(e)


def delete_draft(tenant_id: str, entry_id: int, actor: str, actor_role: str | None = None) -> None:
    """Soft-delete a draft. Only its creator or an admin may do so."""
    with ledger_scope() as s:
        e = _guarded_entry(s, tenant_id, entry_id, "delete it")
        if e.created_by and actor != e.created_by and actor_role != "admin":
            raise PermissionDeniedError(
                f"only {e.created_by} or an admin may delete draft {e.id}")
        e.deleted_at = now_utc()


def get_entry(tenant_id: str, entry_id: int) -> dict:
    with session_scope() as s:
        return entry_to_dict(load_entry(s, tenant_id, entry_id))


def list_entries(tenant_id: str, *, posted: bool | None = None,
                 start: date | None = None, end: date | None = None,
                 limit: int = 200) -> list[dict]:
    with session_scope() as s:
        q = select(JournalEntry).where(
            JournalEntry.tenant_id == tenant_id,
            JournalEntry.deleted_at.is_(None),
        )
        if posted is not None:
            q = q.where(JournalEntry.posted.is_(posted))
        if start is not None:
            q = q.where(JournalEntry.posting_date >= start)
        if end is not None:
            q = q.where(JournalEntry.posting_date <= end)
        q = q.order_by(JournalEntry.posting_date.desc(),
                       JournalEntry.id.desc()).limit(limit)
        return [entry_to_dict(e, with_lines=False) for e in s.execute(q).scalars().all()]


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------

def _append_lines(s, tenant_id: str, e: JournalEntry, lines: list[dict]) -> list[JournalLine]:
    added = []
    for raw in lines:
        unknown = set(raw) - _LINE_FIELDS
        if unknown:
            raise ValidationError(f"unknown line fields: {', '.join(sorted(unknown))}")
        vals = normalize_line(s, tenant_id, **raw)
        l = JournalLine(tenant_id=tenant_id, line_no=_next_line_no(e), **vals)
        e.lines.append(l)
        added.append(l)
    return added


def add_lines(tenant_id: str, entry_id: int, lines: list[dict]) -> list[int]:
    """
    Add several lines in one write. The resulting entry must either be
    empty or balanced, otherwise nothing is written.
    """
    if not lines:
        raise ValidationError("no lines given")
    with ledger_scope() as s:
        e = _guarded_entry(s, tenant_id, entry_id, "add lines")
        added = _append_lines(s, tenant_id, e, lines)
        _touch(e)
        s.flush()
        return [l.id for l in added]


def replace_lines(tenant_id: str, entry_id: int, lines: list[dict]) -> list[int]:
    """
    Swap every line of a draft for `lines` in one write. An empty list
    clears the draft.
    """
    with ledger_scope() as s:
        e = _guarded_entry(s, tenant_id, entry_id, "replace lines")
        for l in list(e.lines):
            e.lines.remove(l)
        added = _append_lines(s, tenant_id, e, lines or [])
        _touch(e)
        s.flush()
        return [l.id for l in added]


def add_line(tenant_id: str, entry_id: int, account_id: int, debit=0, credit=0,
             memo: str | None = None, *, currency: str | None = None,
             exchange_rate=None) -> int:
    with ledger_scope() as s:
        e = _guarded_entry(s, tenant_id, entry_id, "add a line")
        vals = normalize_line(s, tenant_id, account_id=account_id, debit=debit,
                              credit=credit, currency=currency,
                              exchange_rate=exchange_rate, memo=memo)
        l = JournalLine(tenant_id=tenant_id, line_no=_next_line_no(e), **vals)
        e.lines.append(l)
        _touch(e)
        s.flush()
        return l.id


def update_line(tenant_id: str, line_id: int, **fields) -> dict:
    unknown = set(fields) - _LINE_FIELDS
    if unknown:
        raise ValidationError(f"unknown line fields: {', '.join(sorted(unknown))}")
    with ledger_scope() as s:
        l = _load_line(s, tenant_id, line_id)
        e = _guarded_entry(s, tenant_id, l.entry_id, "edit a line")
        current = {
            "account_id": l.account_id, "debit": l.debit, "credit": l.credit,
            "currency": l.currency, "exchange_rate": l.exchange_rate, "memo": l.memo,
        }
        current.update(fields)
        for k, v in normalize_line(s, tenant_id, **current).items():
            setattr(l, k, v)
        _touch(e)
        s.flush()
        return line_to_dict(l)


def remove_line(tenant_id: str, line_id: int) -> None:
    with ledger_scope() as s:
        l = _load_line(s, tenant_id, line_id)
        e = _guarded_entry(s, tenant_id, l.entry_id, "remove a line")
        e.lines.remove(l)
        _touch(e)
