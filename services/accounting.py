# services/accounting.py
"""
Canonical reporting views.

Every aggregate number the ledger reports comes from here, derived from
posted journal lines only. An entry counts when it is posted, not
reversed, not itself the reversal of another entry, and not soft-deleted;
a reversed pair therefore drops out of every view together. The exclusion
goes by those flags, not by date: once an entry is reversed it disappears
from every as-of or date-ranged view, including views dated before the
reversal was posted.

Amounts are summed as integer cents and handed back as Decimal.
"""
from __future__ import annotations
from datetime import date
from decimal import Decimal

import pandas as pd
from sqlalchemy import select

from models.base import session_scope
from models.ledger import Account, JournalEntry, JournalLine, DEBIT_NORMAL
from services.errors import MissingControlAccountError, ValidationError
from services.money import from_cents, to_cents

AGING_BUCKETS = ["0-30", "31-60", "61-90", "90+"]
CASH_CATEGORIES = ("cash", "bank")

_LINE_COLS = ["entry_id", "posting_date", "account_id", "code", "name",
              "type", "category", "debit", "credit", "base_amount"]
_ACCOUNT_COLS = ["account_id", "code", "name", "type", "category", "is_active"]


def _effective_lines(s, tenant_id: str, *, start: date | None = None,
                     end: date | None = None) -> pd.DataFrame:
    """Posted, unreversed, non-reversal lines; start/end filter on posting_date only."""
    q = (
        select(JournalLine.entry_id, JournalEntry.posting_date, JournalLine.account_id,
               Account.code, Account.name, Account.type, Account.category,
               JournalLine.debit, JournalLine.credit, JournalLine.base_amount)
        .join(JournalEntry, JournalLine.entry_id == JournalEntry.id)
        .join(Account, JournalLine.account_id == Account.id)
        .where(
            JournalEntry.tenant_id == tenant_id,
            JournalLine.tenant_id == tenant_id,
            JournalEntry.posted.is_(True),
            JournalEntry.reversed.is_(False),
            JournalEntry.reversal_of.is_(None),
            JournalEntry.deleted_at.is_(None),
        )
    )
    if start is not None:
        q = q.where(JournalEntry.posting_date >= start)
    if end is not None:
        q = q.where(JournalEntry.posting_date <= end)

    df = pd.DataFrame(s.execute(q).all(), columns=_LINE_COLS)
    df["entry_id"] = df["entry_id"].astype("int64")
    df["account_id"] = df["account_id"].astype("int64")
    df["posting_date"] = pd.to_datetime(df["posting_date"])
    df["amount_cents"] = df["base_amount"].map(to_cents).astype("int64")
    is_debit = df["debit"].map(to_cents).astype("int64") > 0
    df["dr_cents"] = df["amount_cents"].where(is_debit, 0)
    df["cr_cents"] = df["amount_cents"].where(~is_debit, 0)
    # balance in the account's normal sign
    normal_debit = df["type"].isin(DEBIT_NORMAL)
    df["signed_cents"] = (df["dr_cents"] - df["cr_cents"]).where(
        normal_debit, df["cr_cents"] - df["dr_cents"])
    return df


def _accounts(s, tenant_id: str) -> pd.DataFrame:
    rows = s.execute(
        select(Account.id, Account.code, Account.name, Account.type,
               Account.category, Account.is_active)
        .where(Account.tenant_id == tenant_id)
    ).all()
    df = pd.DataFrame(rows, columns=_ACCOUNT_COLS)
    df["account_id"] = df["account_id"].astype("int64")
    df["is_active"] = df["is_active"].astype(bool)
    return df


def _cents_to_money(df: pd.DataFrame, cols) -> pd.DataFrame:
    for c in cols:
        df[c] = df[c].map(from_cents)
    return df


def trial_balance(tenant_id: str, as_of: date | None = None) -> pd.DataFrame:
    """
    One row per account with activity (or still active), sorted by code.

    balance   -- normal-signed: asset/expense = debits - credits,
                 liability/equity/revenue = credits - debits
    net_debit -- debits - credits, sums to zero over a balanced ledger

    A reversed original and its reversal are both left out whatever
    `as_of` is, so an as-of date between the two shows neither.
    """
    with session_scope() as s:
        lines = _effective_lines(s, tenant_id, end=as_of)
        accounts = _accounts(s, tenant_id)

    g = lines.groupby("account_id").agg(
        total_debits=("dr_cents", "sum"),
        total_credits=("cr_cents", "sum"),
        balance=("signed_cents", "sum"),
        entry_count=("entry_id", "nunique"),
        last_posting_date=("posting_date", "max"),
    ).reset_index()

    tb = accounts.merge(g, on="account_id", how="left")
    tb = tb[tb["is_active"] | tb["entry_count"].notna()].copy()
    for c in ("total_debits", "total_credits", "balance", "entry_count"):
        tb[c] = tb[c].fillna(0).astype("int64")
    tb["net_debit"] = tb["total_debits"] - tb["total_credits"]
    tb["last_posting_date"] = tb["last_posting_date"].map(
        lambda ts: None if pd.isna(ts) else ts.date())

    sum_dr = int(tb["total_debits"].sum())
    sum_cr = int(tb["total_credits"].sum())
    tb = _cents_to_money(tb, ["total_debits", "total_credits", "balance", "net_debit"])
    tb = tb.sort_values("code").reset_index(drop=True)[
        ["account_id", "code", "name", "type", "total_debits", "total_credits",
         "balance", "net_debit", "entry_count", "last_posting_date"]]
    tb.attrs["as_of"] = as_of
    tb.attrs["sum_debits"] = from_cents(sum_dr)
    tb.attrs["sum_credits"] = from_cents(sum_cr)
    tb.attrs["out_of_balance"] = from_cents(sum_dr - sum_cr)
    return tb


def profit_and_loss(tenant_id: str, start: date, end: date) -> pd.DataFrame:
    """Revenue, cost of goods sold and expense accounts over [start, end] by posting date."""
    if end < start:
        raise ValidationError("end date is before start date")
    with session_scope() as s:
        lines = _effective_lines(s, tenant_id, start=start, end=end)

    pl = lines[lines["type"].isin(["revenue", "expense"])].copy()
    pl["section"] = "Expense"
    pl.loc[pl["type"] == "revenue", "section"] = "Revenue"
    pl.loc[(pl["type"] == "expense") & (pl["category"] == "cogs"),
           "section"] = "Cost of Goods Sold"

    g = pl.groupby(["section", "account_id", "code", "name"]).agg(
        amount=("signed_cents", "sum")).reset_index()

    def _total(section):
        return int(g.loc[g["section"] == section, "amount"].sum())

    revenue, cogs, expenses = _total("Revenue"), _total("Cost of Goods Sold"), _total("Expense")
    order = {"Revenue": 0, "Cost of Goods Sold": 1, "Expense": 2}
    g["_o"] = g["section"].map(order)
    g = g.sort_values(["_o", "code"]).drop(columns="_o").reset_index(drop=True)
    g = _cents_to_money(g, ["amount"])
    g.attrs.update({
        "start": start, "end": end,
        "revenue": from_cents(revenue),
        "cogs": from_cents(cogs),
        "gross_profit": from_cents(revenue - cogs),
        "expenses": from_cents(expenses),
        "net_income": from_cents(revenue - cogs - expenses),
    })
    return g


def cash_position(tenant_id: str, as_of: date | None = None) -> pd.DataFrame:
    """Asset accounts categorised as cash or bank."""
    with session_scope() as s:
        lines = _effective_lines(s, tenant_id, end=as_of)
        accounts = _accounts(s, tenant_id)

    cash = accounts[(accounts["type"] == "asset")
                    & accounts["category"].isin(CASH_CATEGORIES)]
    bal = lines.groupby("account_id")["signed_cents"].sum().rename("balance")
    out = cash.merge(bal, left_on="account_id", right_index=True, how="left")
    out["balance"] = out["balance"].fillna(0).astype("int64")
    total = int(out["balance"].sum())
    out = _cents_to_money(out, ["balance"])
    out = out.sort_values("code").reset_index(drop=True)[
        ["account_id", "code", "name", "category", "balance"]]
    out.attrs["as_of"] = as_of
    out.attrs["total"] = from_cents(total)
    return out


def _aging(tenant_id: str, as_of: date, category: str) -> pd.DataFrame:
    with session_scope() as s:
        lines = _effective_lines(s, tenant_id, end=as_of)
        accounts = _accounts(s, tenant_id)

    ctl = accounts[accounts["category"] == category][["account_id", "code", "name"]]
    lines = lines[lines["category"] == category].copy()
    lines["age_days"] = (pd.Timestamp(as_of) - lines["posting_date"]).dt.days
    lines["bucket"] = pd.cut(lines["age_days"], bins=[-1, 30, 60, 90, float("inf")],
                             labels=AGING_BUCKETS).astype(str)

    if lines.empty:
        pivot = pd.DataFrame(
            columns=AGING_BUCKETS, index=pd.Index([], dtype="int64"), dtype="int64")
    else:
        pivot = (lines.groupby(["account_id", "bucket"])["signed_cents"].sum()
                 .unstack(fill_value=0)
                 .reindex(columns=AGING_BUCKETS, fill_value=0))
    out = ctl.merge(pivot, left_on="account_id", right_index=True, how="left")
    for b in AGING_BUCKETS:
        out[b] = out[b].fillna(0).astype("int64")
    out["total"] = out[AGING_BUCKETS].sum(axis=1)
    totals = {b: from_cents(int(out[b].sum())) for b in AGING_BUCKETS + ["total"]}
    out = _cents_to_money(out, AGING_BUCKETS + ["total"])
    out = out.sort_values("code").reset_index(drop=True)
    out.attrs["as_of"] = as_of
    out.attrs["totals"] = totals
    return out


def ar_aging(tenant_id: str, as_of: date) -> pd.DataFrame:
    """Receivable control accounts, bucketed by days since posting date."""
    return _aging(tenant_id, as_of, "receivable")


def ap_aging(tenant_id: str, as_of: date) -> pd.DataFrame:
    """Payable control accounts, bucketed by days since posting date."""
    return _aging(tenant_id, as_of, "payable")


def balance_sheet(tenant_id: str, as_of: date | None = None) -> dict:
    """Assets vs liabilities + equity, with current earnings folded into equity."""
    tb = trial_balance(tenant_id, as_of)

    def _sum(t):
        return sum(tb.loc[tb["type"] == t, "balance"], Decimal("0.00"))

    assets, liab, equity = _sum("asset"), _sum("liability"), _sum("equity")
    earnings = _sum("revenue") - _sum("expense")
    return {
        "as_of": as_of,
        "assets": assets,
        "liabilities": liab,
        "equity_including_earnings": equity + earnings,
        "check": assets - (liab + equity + earnings),
    }


def control_account_balance(tenant_id: str, category: str, as_of: date | None = None) -> Decimal:
    """Combined balance of the tenant's active accounts in a control category."""
    with session_scope() as s:
        has_ctl = s.execute(
            select(Account.id).where(
                Account.tenant_id == tenant_id,
                Account.category == category,
                Account.is_active.is_(True),
            ).limit(1)
        ).first()
        if not has_ctl:
            raise MissingControlAccountError(
                f"tenant {tenant_id} has no active '{category}' control account",
                category=category)
        lines = _effective_lines(s, tenant_id, end=as_of)
    return from_cents(int(lines.loc[lines["category"] == category, "signed_cents"].sum()))


def account_balance_from_lines(tenant_id: str, account_id: int) -> Decimal:
    with session_scope() as s:
        lines = _effective_lines(s, tenant_id)
    return from_cents(int(lines.loc[lines["account_id"] == account_id, "signed_cents"].sum()))
