# services/gl_posting.py
"""
Posting engine: the only path that turns a draft into financial truth and
the only path that reverses it.

post:     NotFound -> AlreadyPosted -> Empty/Unbalanced -> PeriodLocked
          -> number, posted flags, cached balances (one transaction)
reverse:  NotFound -> NotPosted -> AlreadyReversed -> PeriodLocked
          -> mirrored entry, posted in the same transaction, original flagged
"""
from __future__ import annotations
import logging
import re
from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from models.audit_store import audit
from models.journal_store import entry_to_dict, load_entry
from models.ledger import (
    Account, EntrySequence, JournalEntry, JournalLine, DEBIT_NORMAL
)
from services.datetimex import now_utc, to_date, today_utc
from services.errors import (
    AlreadyPostedError, AlreadyReversedError, ConcurrencyConflictError,
    DuplicateNumberError, EmptyEntryError, LedgerError, NotPostedError,
    UnbalancedEntryError,
)
from services.fiscal_calendar import assert_open
from services.metrics import ENTRIES_POSTED, POST_LATENCY, POST_REJECTED, POST_RETRIES
from services.money import money
from services.settings import cfg_int
from services.txn import ledger_scope

log = logging.getLogger(__name__)

ZERO = Decimal("0.00")
_NUMBER_RX = re.compile(r"^JE-(\d{4})-(\d+)$")
# unique violations that mean another poster took the number first
_NUMBER_CLASH_RX = re.compile(
    r"uq_entry_tenant_number|journal_entries\.entry_number|entry_sequences")
_REVERSAL_CLASH_RX = re.compile(r"uq_entry_reversal_of|journal_entries\.reversal_of")


def format_entry_number(year: int, seq: int) -> str:
    return f"JE-{year}-{seq:04d}"


def _max_issued_seq(s, tenant_id: str, year: int) -> int:
    numbers = s.execute(
        select(JournalEntry.entry_number).where(
            JournalEntry.tenant_id == tenant_id,
            JournalEntry.entry_number.like(f"JE-{year}-%"),
        )
    ).scalars().all()
    best = 0
    for n in numbers:
        m = _NUMBER_RX.match(n or "")
        if m and int(m.group(1)) == year:
            best = max(best, int(m.group(2)))
    return best


def allocate_entry_number(s, tenant_id: str, year: int) -> str:
    """
    Next JE-<year>-<seq> for the tenant. The counter row is bumped with a
    single UPDATE so concurrent posters serialize on it; the first number of
    a year seeds the counter from what was already issued.
    """
    res = s.execute(
        update(EntrySequence)
        .where(EntrySequence.tenant_id == tenant_id, EntrySequence.year == year)
        .values(last_value=EntrySequence.last_value + 1)
    )
    if res.rowcount == 0:
        s.add(EntrySequence(tenant_id=tenant_id, year=year,
                            last_value=_max_issued_seq(s, tenant_id, year) + 1))
        # a concurrent first-of-year insert surfaces as IntegrityError here
        s.flush()
    seq = s.execute(
        select(EntrySequence.last_value).where(
            EntrySequence.tenant_id == tenant_id, EntrySequence.year == year)
    ).scalar_one()
    return format_entry_number(year, seq)


def entry_totals(lines) -> tuple[Decimal, Decimal]:
    debit = sum((money(l.debit) for l in lines), ZERO)
    credit = sum((money(l.credit) for l in lines), ZERO)
    return debit, credit


def _check_balanced(e: JournalEntry) -> None:
    debit, credit = entry_totals(e.lines)
    if debit == 0 and credit == 0:
        raise EmptyEntryError(f"entry {e.id} has no amounts to post")
    if debit != credit:
        raise UnbalancedEntryError(
            f"entry {e.id} does not balance: debit {debit} != credit {credit}",
            total_debit=str(debit), total_credit=str(credit))
    base_dr = sum((money(l.base_amount) for l in e.lines if money(l.debit) > 0), ZERO)
    base_cr = sum((money(l.base_amount) for l in e.lines if money(l.credit) > 0), ZERO)
    if base_dr != base_cr:
        raise UnbalancedEntryError(
            f"entry {e.id} does not balance in base currency: {base_dr} != {base_cr}",
            total_debit=str(base_dr), total_credit=str(base_cr))


def _apply_balances(s, tenant_id: str, lines) -> None:
    """Increment cached balances in the account's normal sign, one UPDATE per account."""
    ids = {l.account_id for l in lines}
    types = dict(s.execute(
        select(Account.id, Account.type).where(
            Account.id.in_(ids), Account.tenant_id == tenant_id)
    ).all())
    deltas: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for l in lines:
        amt = money(l.base_amount)
        is_debit = money(l.debit) > 0
        deltas[l.account_id] += amt if is_debit == (types[l.account_id] in DEBIT_NORMAL) else -amt
    # fixed lock order across concurrent posts
    for account_id in sorted(deltas):
        s.execute(
            update(Account)
            .where(Account.id == account_id, Account.tenant_id == tenant_id)
            .values(balance=Account.balance + deltas[account_id])
        )


def _post_in_session(s, e: JournalEntry, actor: str) -> None:
    if e.posted:
        log.error("tenant=%s attempted to re-post entry %s (%s)",
                  e.tenant_id, e.id, e.entry_number)
        raise AlreadyPostedError(f"entry {e.entry_number} is already posted", entry_id=e.id)
    _check_balanced(e)
    assert_open(s, e.tenant_id, e.posting_date, what="posting")

    e.entry_number = allocate_entry_number(s, e.tenant_id, e.posting_date.year)
    e.total_debit, e.total_credit = entry_totals(e.lines)
    e.posted = True
    e.posted_by = actor
    e.posted_at = now_utc()
    # version check on the entry row happens here
    s.flush()
    _apply_balances(s, e.tenant_id, e.lines)


def _retrying(op: str, fn):
    attempts = max(1, cfg_int("POST_MAX_RETRIES", 5))
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except DuplicateNumberError as exc:
            POST_RETRIES.inc()
            log.warning("%s: entry number collision (attempt %d/%d): %s",
                        op, attempt, attempts, exc)
            if attempt == attempts:
                raise ConcurrencyConflictError(
                    f"{op} could not allocate an entry number after {attempts} attempts") from exc


def post_entry(tenant_id: str, entry_id: int, actor: str) -> dict:
    """Post a draft entry. Returns the posted, now immutable entry."""

    def once():
        try:
            with ledger_scope() as s:
                e = load_entry(s, tenant_id, entry_id, for_update=True)
                _post_in_session(s, e, actor)
                return entry_to_dict(e)
        except IntegrityError as exc:
            if _NUMBER_CLASH_RX.search(str(exc.orig)):
                raise DuplicateNumberError(str(exc.orig)) from exc
            raise

    try:
        with POST_LATENCY.labels(op="post").time():
            out = _retrying("post", once)
    except LedgerError as e:
        POST_REJECTED.labels(reason=e.code).inc()
        audit("gl.entry.post", tenant_id=tenant_id, target_type="journal_entry",
              target_id=str(entry_id), outcome="blocked", status=e.http_status,
              error_code=e.code, actor=actor, extra={"reason": e.message})
        raise

    ENTRIES_POSTED.labels(kind="standard").inc()
    audit("gl.entry.post", tenant_id=tenant_id, target_type="journal_entry",
          target_id=str(entry_id), outcome="success", status=200, actor=actor,
          extra={"entry_number": out["entry_number"],
                 "posting_date": out["posting_date"].isoformat(),
                 "total": str(out["total_debit"]), "lines": len(out["lines"])})
    log.info("tenant=%s posted %s (entry %s) by %s",
             tenant_id, out["entry_number"], entry_id, actor)
    return out


def _mirror(orig: JournalEntry, reversal_date, reason: str | None, actor: str) -> JournalEntry:
    desc = f"REVERSAL: {orig.description}"
    if reason:
        desc += f" - Reason: {reason}"
    rev = JournalEntry(
        tenant_id=orig.tenant_id, entry_date=reversal_date, posting_date=reversal_date,
        description=desc, reference_type=orig.reference_type,
        reference_id=orig.reference_id, reversal_of=orig.id, notes=reason,
        created_by=actor, posted=False, reversed=False,
        total_debit=money(orig.total_credit), total_credit=money(orig.total_debit),
    )
    for l in orig.lines:
        rev.lines.append(JournalLine(
            tenant_id=orig.tenant_id, line_no=l.line_no, account_id=l.account_id,
            debit=money(l.credit), credit=money(l.debit),
            currency=l.currency, exchange_rate=l.exchange_rate,
            base_amount=money(l.base_amount),
            memo=f"REVERSAL: {l.memo or orig.description}",
        ))
    return rev


def reverse_entry(tenant_id: str, entry_id: int, reversal_date=None,
                  reason: str | None = None, actor: str = "system") -> dict:
    """
    Create, post and return the mirror image of a posted entry dated
    `reversal_date`, and flag the original as reversed.
    """
    reversal_date = to_date(reversal_date, "reversal_date") if reversal_date else today_utc()

    def once():
        try:
            with ledger_scope() as s:
                orig = load_entry(s, tenant_id, entry_id, for_update=True)
                if not orig.posted:
                    raise NotPostedError(f"entry {entry_id} is a draft; only posted entries reverse")
                if orig.reversed:
                    raise AlreadyReversedError(
                        f"entry {orig.entry_number} has already been reversed", entry_id=orig.id)
                assert_open(s, tenant_id, reversal_date, what="reversal")

                rev = _mirror(orig, reversal_date, reason, actor)
                s.add(rev)
                s.flush()
                _post_in_session(s, rev, actor)
                orig.reversed = True
                s.flush()
                return entry_to_dict(rev), orig.entry_number
        except IntegrityError as exc:
            if _NUMBER_CLASH_RX.search(str(exc.orig)):
                raise DuplicateNumberError(str(exc.orig)) from exc
            if _REVERSAL_CLASH_RX.search(str(exc.orig)):
                raise AlreadyReversedError(
                    f"entry {entry_id} was reversed concurrently", entry_id=entry_id) from exc
            raise

    try:
        with POST_LATENCY.labels(op="reverse").time():
            out, orig_number = _retrying("reverse", once)
    except LedgerError as e:
        POST_REJECTED.labels(reason=e.code).inc()
        audit("gl.entry.reverse", tenant_id=tenant_id, target_type="journal_entry",
              target_id=str(entry_id), outcome="blocked", status=e.http_status,
              error_code=e.code, actor=actor, extra={"reason": e.message})
        raise

    ENTRIES_POSTED.labels(kind="reversal").inc()
    audit("gl.entry.reverse", tenant_id=tenant_id, target_type="journal_entry",
          target_id=str(entry_id), outcome="success", status=200, actor=actor,
          extra={"entry_number": orig_number, "reversal_id": out["id"],
                 "posting_date": reversal_date.isoformat(), "reason": reason,
                 "total": str(out["total_debit"])})
    log.info("tenant=%s reversed %s with %s by %s",
             tenant_id, orig_number, out["entry_number"], actor)
    return out
