from datetime import date
from decimal import Decimal

import pytest

from models import journal_store
from services import gl_posting
from services.errors import (
    ImmutableEntryError, NotFoundError, PermissionDeniedError,
    UnbalancedEntryError, ValidationError,
)
from tests.utils import OTHER_TENANT, draft


@pytest.mark.db
def test_new_draft_has_no_number_and_no_lines(tenant, chart):
    eid = journal_store.create_draft_entry(
        tenant, "2025-02-03", "Office rent", "bill", "B-17", created_by="bob")
    e = journal_store.get_entry(tenant, eid)
    assert e["posted"] is False
    assert e["entry_number"] is None
    assert e["lines"] == []
    assert str(e["posting_date"]) == "2025-02-03"
    assert e["reference_type"] == "bill" and e["reference_id"] == "B-17"


@pytest.mark.db
def test_posting_date_defaults_to_entry_date_but_can_differ(tenant):
    eid = journal_store.create_draft_entry(
        tenant, "2025-02-28", "Accrual", posting_date="2025-03-01")
    e = journal_store.get_entry(tenant, eid)
    assert str(e["entry_date"]) == "2025-02-28"
    assert str(e["posting_date"]) == "2025-03-01"


@pytest.mark.db
@pytest.mark.parametrize("kwargs", [
    {"description": "   "},
    {"entry_date": "not-a-date"},
    {"reference_type": "receipt"},
])
def test_create_draft_rejects_bad_input(tenant, kwargs):
    args = {"entry_date": "2025-02-03", "description": "ok"}
    args.update(kwargs)
    with pytest.raises(ValidationError):
        journal_store.create_draft_entry(
            tenant, args.pop("entry_date"), args.pop("description"), **args)


@pytest.mark.db
def test_add_lines_sets_totals(tenant, chart):
    eid = draft(tenant, "2025-02-03", [
        (chart["6000"], "120.50", 0),
        (chart["1010"], 0, "100.00"),
        (chart["1000"], 0, "20.50"),
    ])
    e = journal_store.get_entry(tenant, eid)
    assert e["total_debit"] == Decimal("120.50")
    assert e["total_credit"] == Decimal("120.50")
    assert [l["line_no"] for l in e["lines"]] == [1, 2, 3]


@pytest.mark.db
def test_unbalanced_batch_writes_nothing(tenant, chart):
    eid = draft(tenant, "2025-02-03", [])
    with pytest.raises(UnbalancedEntryError):
        journal_store.add_lines(tenant, eid, [
            {"account_id": chart["6000"], "debit": 100},
            {"account_id": chart["1000"], "credit": 90},
        ])
    assert journal_store.get_entry(tenant, eid)["lines"] == []


@pytest.mark.db
@pytest.mark.parametrize("line", [
    {"debit": 10, "credit": 10},
    {"debit": 0, "credit": 0},
    {"debit": -5},
    {"debit": "abc"},
    {"debit": 10, "currency": "usd1"},
    {"debit": 10, "exchange_rate": 0},
    {"debit": 10, "exchange_rate": "-1.5"},
])
def test_line_validation(tenant, chart, line):
    eid = draft(tenant, "2025-02-03", [])
    with pytest.raises(ValidationError) as exc:
        journal_store.add_lines(tenant, eid, [{"account_id": chart["1000"], **line},
                                              {"account_id": chart["6000"], "credit": 10}])
    assert not isinstance(exc.value, UnbalancedEntryError)


@pytest.mark.db
def test_line_account_must_exist_in_tenant(tenant, chart):
    eid = draft(tenant, "2025-02-03", [])
    with pytest.raises(ValidationError):
        journal_store.add_line(tenant, eid, 999999, 10)

    other = draft(OTHER_TENANT, "2025-02-03", [])
    with pytest.raises(ValidationError):
        journal_store.add_line(OTHER_TENANT, other, chart["1000"], 10)


@pytest.mark.db
def test_foreign_currency_line_gets_base_amount(tenant, chart):
    eid = draft(tenant, "2025-02-03", [])
    lid, _ = journal_store.add_lines(tenant, eid, [
        {"account_id": chart["6000"], "debit": "100.00", "currency": "eur", "exchange_rate": "1.105"},
        {"account_id": chart["1010"], "credit": "100.00", "currency": "EUR", "exchange_rate": "1.105"},
    ])
    line = journal_store.get_entry(tenant, eid)["lines"][0]
    assert line["id"] == lid
    assert line["currency"] == "EUR"
    assert line["base_amount"] == Decimal("110.50")


@pytest.mark.db
def test_add_line_cannot_unbalance_a_draft(tenant, chart):
    empty = draft(tenant, "2025-02-03", [])
    with pytest.raises(UnbalancedEntryError):
        journal_store.add_line(tenant, empty, chart["6000"], 50)
    assert journal_store.get_entry(tenant, empty)["lines"] == []

    eid = draft(tenant, "2025-02-03", [(chart["6000"], 100, 0), (chart["1000"], 0, 100)])
    with pytest.raises(UnbalancedEntryError):
        journal_store.add_line(tenant, eid, chart["6000"], 5)
    e = journal_store.get_entry(tenant, eid)
    assert len(e["lines"]) == 2
    assert (e["total_debit"], e["total_credit"]) == (Decimal("100.00"), Decimal("100.00"))


@pytest.mark.db
def test_update_line_keeps_draft_balanced(tenant, chart):
    eid = draft(tenant, "2025-02-03", [(chart["6000"], 100, 0), (chart["1000"], 0, 100)])
    debit_line, credit_line = journal_store.get_entry(tenant, eid)["lines"]

    updated = journal_store.update_line(tenant, debit_line["id"],
                                        account_id=chart["5000"], memo="fixed")
    assert updated["account_id"] == chart["5000"]
    assert updated["memo"] == "fixed"

    with pytest.raises(UnbalancedEntryError):
        journal_store.update_line(tenant, debit_line["id"], debit="250")
    with pytest.raises(ValidationError):
        # a debit on the credit line would give it two sides
        journal_store.update_line(tenant, credit_line["id"], debit=5)

    e = journal_store.get_entry(tenant, eid)
    assert e["lines"][0]["debit"] == Decimal("100.00")
    assert (e["total_debit"], e["total_credit"]) == (Decimal("100.00"), Decimal("100.00"))


@pytest.mark.db
def test_remove_line_cannot_unbalance_a_draft(tenant, chart):
    eid = draft(tenant, "2025-02-03", [(chart["6000"], 100, 0), (chart["1000"], 0, 100)])
    credit_line = journal_store.get_entry(tenant, eid)["lines"][1]

    with pytest.raises(UnbalancedEntryError):
        journal_store.remove_line(tenant, credit_line["id"])

    e = journal_store.get_entry(tenant, eid)
    assert [l["id"] for l in e["lines"]][-1] == credit_line["id"]
    assert (e["total_debit"], e["total_credit"]) == (Decimal("100.00"), Decimal("100.00"))


@pytest.mark.db
def test_replace_lines_swaps_the_whole_set(tenant, chart):
    eid = draft(tenant, "2025-02-03", [(chart["6000"], 40, 0), (chart["1000"], 0, 40)])
    ids = journal_store.replace_lines(tenant, eid, [
        {"account_id": chart["6000"], "debit": "45.00", "memo": "desk"},
        {"account_id": chart["1000"], "credit": "20.00"},
        {"account_id": chart["1010"], "credit": "25.00"},
    ])
    e = journal_store.get_entry(tenant, eid)
    assert [l["id"] for l in e["lines"]] == ids
    assert [l["line_no"] for l in e["lines"]] == [1, 2, 3]
    assert (e["total_debit"], e["total_credit"]) == (Decimal("45.00"), Decimal("45.00"))

    with pytest.raises(UnbalancedEntryError):
        journal_store.replace_lines(tenant, eid, [
            {"account_id": chart["6000"], "debit": 100},
            {"account_id": chart["1000"], "credit": 90},
        ])
    assert [l["id"] for l in journal_store.get_entry(tenant, eid)["lines"]] == ids

    assert journal_store.replace_lines(tenant, eid, []) == []
    e = journal_store.get_entry(tenant, eid)
    assert e["lines"] == []
    assert e["total_debit"] == e["total_credit"] == Decimal("0.00")


@pytest.mark.db
def test_create_draft_with_lines_commits_together(tenant, chart):
    with pytest.raises(UnbalancedEntryError):
        journal_store.create_draft_entry(tenant, "2025-02-03", "half paid", lines=[
            {"account_id": chart["6000"], "debit": 100},
            {"account_id": chart["1000"], "credit": 90},
        ])
    assert journal_store.list_entries(tenant) == []

    eid = journal_store.create_draft_entry(tenant, "2025-02-03", "paid", lines=[
        {"account_id": chart["6000"], "debit": 100},
        {"account_id": chart["1000"], "credit": 100},
    ])
    e = journal_store.get_entry(tenant, eid)
    assert [l["line_no"] for l in e["lines"]] == [1, 2]
    assert e["total_credit"] == Decimal("100.00")


@pytest.mark.db
def test_update_entry_fields(tenant, chart):
    eid = draft(tenant, "2025-02-03", [])
    e = journal_store.update_entry(tenant, eid, description="Renamed", notes="n",
                                   posting_date="2025-02-10")
    assert e["description"] == "Renamed"
    assert str(e["posting_date"]) == "2025-02-10"
    with pytest.raises(ValidationError):
        journal_store.update_entry(tenant, eid, posted=True)


@pytest.mark.db
def test_posted_entry_is_immutable(tenant, chart):
    eid = draft(tenant, "2025-02-03", [(chart["6000"], 10, 0), (chart["1000"], 0, 10)])
    posted = gl_posting.post_entry(tenant, eid, "bob")
    line_id = posted["lines"][0]["id"]

    attempts = [
        lambda: journal_store.add_line(tenant, eid, chart["6000"], 1),
        lambda: journal_store.add_lines(tenant, eid, [{"account_id": chart["6000"], "debit": 1},
                                                      {"account_id": chart["1000"], "credit": 1}]),
        lambda: journal_store.update_line(tenant, line_id, memo="edited"),
        lambda: journal_store.remove_line(tenant, line_id),
        lambda: journal_store.replace_lines(tenant, eid, []),
        lambda: journal_store.update_entry(tenant, eid, description="edited"),
        lambda: journal_store.delete_draft(tenant, eid, "bob", actor_role="admin"),
    ]
    for attempt in attempts:
        with pytest.raises(ImmutableEntryError) as exc:
            attempt()
        # immutability violations are also validation failures
        assert isinstance(exc.value, ValidationError)

    after = journal_store.get_entry(tenant, eid)
    assert after["lines"] == posted["lines"]
    assert after["description"] == posted["description"]


@pytest.mark.db
def test_delete_draft_owner_or_admin(tenant, chart):
    eid = draft(tenant, "2025-02-03", [], created_by="alice")
    with pytest.raises(PermissionDeniedError):
        journal_store.delete_draft(tenant, eid, "bob", actor_role="user")

    journal_store.delete_draft(tenant, eid, "carol", actor_role="admin")
    with pytest.raises(NotFoundError):
        journal_store.get_entry(tenant, eid)
    assert journal_store.list_entries(tenant) == []

    own = draft(tenant, "2025-02-03", [], created_by="alice")
    journal_store.delete_draft(tenant, own, "alice")


@pytest.mark.db
def test_entries_are_tenant_scoped(tenant, chart):
    eid = draft(tenant, "2025-02-03", [])
    with pytest.raises(NotFoundError):
        journal_store.get_entry(OTHER_TENANT, eid)
    with pytest.raises(NotFoundError):
        journal_store.update_entry(OTHER_TENANT, eid, description="mine now")


@pytest.mark.db
def test_list_entries_filters(tenant, chart):
    a = draft(tenant, "2025-01-15", [(chart["6000"], 5, 0), (chart["1000"], 0, 5)])
    b = draft(tenant, "2025-02-15", [])
    gl_posting.post_entry(tenant, a, "bob")

    assert [e["id"] for e in journal_store.list_entries(tenant, posted=True)] == [a]
    assert [e["id"] for e in journal_store.list_entries(tenant, posted=False)] == [b]
    feb = journal_store.list_entries(tenant, start=date(2025, 2, 1))
    assert [e["id"] for e in feb] == [b]
