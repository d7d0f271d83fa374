from decimal import Decimal

import pytest

from models import coa_store, journal_store, subledger_store
from services import fiscal_calendar, gl_posting, reconciliation
from services.errors import (
    MissingControlAccountError, NotFoundError, PeriodLockedError, ValidationError,
)
from services.reconciliation import Thresholds
from tests.utils import OTHER_TENANT, draft


def _chart(tenant):
    coa_store.seed_default_chart(tenant)
    return {a["code"]: a["id"] for a in coa_store.list_accounts(tenant)}


def _sale(tenant, accounts, number, amount, post=True, day="2025-05-10"):
    """A sent invoice and the matching Dr AR / Cr Revenue entry."""
    subledger_store.create_invoice(tenant, number, "Initech", day, amount, status="sent")
    eid = draft(tenant, day, [(accounts["1200"], amount, 0), (accounts["4000"], 0, amount)],
                description=f"Invoice {number}", reference_type="invoice", reference_id=number)
    if post:
        gl_posting.post_entry(tenant, eid, "bob")
    return eid


@pytest.fixture
def two_tenants(tenant):
    a, b = _chart(tenant), _chart(OTHER_TENANT)
    _sale(tenant, a, "INV-1", "1000.00")
    _sale(tenant, a, "INV-2", "335.00")
    _sale(OTHER_TENANT, b, "INV-1", "1000.00")
    _sale(OTHER_TENANT, b, "INV-2", "285.00")
    # sent to the customer but never posted
    _sale(OTHER_TENANT, b, "INV-3", "50.00", post=False)
    return a, b


@pytest.mark.db
def test_balanced_tenant_gets_no_alerts(tenant, two_tenants):
    results = reconciliation.reconcile(tenant, "carol")
    ar = next(r for r in results if r.reconciliation_type == "accounts_receivable")
    assert ar.status == "balanced"
    assert ar.subledger_total == ar.control_balance == Decimal("1335.00")
    assert ar.records_checked == 2
    assert all(r.status == "balanced" for r in results)

    assert reconciliation.list_alerts(tenant) == []
    status = reconciliation.get_latest_reconciliation_status(tenant)
    assert status["status"] == "success"
    assert status["unresolved_alerts"] == 0


@pytest.mark.db
def test_unposted_invoice_raises_a_medium_alert(two_tenants):
    results = reconciliation.reconcile(OTHER_TENANT, "carol")
    ar = next(r for r in results if r.reconciliation_type == "accounts_receivable")
    assert ar.status == "mismatch"
    assert ar.variance == Decimal("50.00")
    assert ar.severity == "medium"
    assert ar.alert_id is not None

    alerts = reconciliation.list_alerts(OTHER_TENANT)
    assert len(alerts) == 1
    a = alerts[0]
    assert a["id"] == ar.alert_id
    assert a["alert_type"] == "ar_mismatch"
    assert a["title"] == "Accounts Receivable Mismatch Detected"
    assert a["expected_value"] == Decimal("1335.00")
    assert a["actual_value"] == Decimal("1285.00")
    assert a["variance"] == Decimal("50.00")

    status = reconciliation.get_latest_reconciliation_status(OTHER_TENANT)
    assert status["status"] == "warning"
    assert status["unresolved_alerts"] == 1
    assert status["critical_alerts"] == 0


@pytest.mark.db
def test_alerts_are_tenant_scoped(tenant, two_tenants):
    reconciliation.reconcile(tenant)
    reconciliation.reconcile(OTHER_TENANT)
    assert reconciliation.list_alerts(tenant) == []
    assert len(reconciliation.list_alerts(OTHER_TENANT)) == 1
    alert_id = reconciliation.list_alerts(OTHER_TENANT)[0]["id"]
    with pytest.raises(NotFoundError):
        reconciliation.resolve_alert(tenant, alert_id, "mallory")


@pytest.mark.db
def test_posting_the_missing_entry_clears_the_variance(two_tenants):
    reconciliation.reconcile(OTHER_TENANT)
    pending = journal_store.list_entries(OTHER_TENANT, posted=False)[0]
    gl_posting.post_entry(OTHER_TENANT, pending["id"], "bob")

    results = reconciliation.reconcile(OTHER_TENANT)
    assert all(r.status == "balanced" for r in results)
    assert reconciliation.get_latest_reconciliation_status(OTHER_TENANT)["status"] == "success"
    # the old alert stays until a person resolves it
    assert len(reconciliation.list_alerts(OTHER_TENANT)) == 1


@pytest.mark.db
def test_status_before_any_run(tenant):
    status = reconciliation.get_latest_reconciliation_status(tenant)
    assert status == {"last_reconciled_at": None, "status": "never_run",
                      "unresolved_alerts": 0, "critical_alerts": 0}


@pytest.mark.db
def test_resolve_alert(two_tenants):
    reconciliation.reconcile(OTHER_TENANT)
    alert = reconciliation.list_alerts(OTHER_TENANT)[0]

    out = reconciliation.resolve_alert(OTHER_TENANT, alert["id"], "carol", "INV-3 posted late")
    assert out["resolved_by"] == "carol"
    assert out["resolution_notes"] == "INV-3 posted late"
    assert out["resolved_at"] is not None

    assert reconciliation.list_alerts(OTHER_TENANT) == []
    assert len(reconciliation.list_alerts(OTHER_TENANT, unresolved_only=False)) == 1
    with pytest.raises(ValidationError):
        reconciliation.resolve_alert(OTHER_TENANT, alert["id"], "carol")
    with pytest.raises(NotFoundError):
        reconciliation.resolve_alert(OTHER_TENANT, 987654, "carol")


@pytest.mark.db
def test_missing_control_account_records_a_failed_run(tenant):
    with pytest.raises(MissingControlAccountError):
        reconciliation.reconcile(tenant, "carol")
    runs = reconciliation.list_runs(tenant)
    assert len(runs) == 1
    assert runs[0]["status"] == "failed"
    assert reconciliation.get_latest_reconciliation_status(tenant)["status"] == "failed"


@pytest.mark.parametrize("high, critical, expected", [
    ("100", "1000", "medium"),
    ("10", "1000", "high"),
    ("10", "40", "critical"),
])
@pytest.mark.db
def test_threshold_overrides_set_severity(two_tenants, high, critical, expected):
    th = Thresholds(epsilon=Decimal("0.01"), high=Decimal(high), critical=Decimal(critical))
    results = reconciliation.reconcile(OTHER_TENANT, thresholds=th)
    ar = next(r for r in results if r.reconciliation_type == "accounts_receivable")
    assert ar.severity == expected


@pytest.mark.db
def test_variance_within_epsilon_is_balanced(two_tenants):
    th = Thresholds(epsilon=Decimal("50.00"))
    results = reconciliation.reconcile(OTHER_TENANT, thresholds=th)
    assert all(r.status == "balanced" for r in results)
    assert reconciliation.list_alerts(OTHER_TENANT) == []


@pytest.mark.db
def test_only_runs_named_checks(two_tenants):
    results = reconciliation.reconcile(OTHER_TENANT, only=["accounts_receivable"])
    assert [r.reconciliation_type for r in results] == ["accounts_receivable"]
    with pytest.raises(ValidationError):
        reconciliation.reconcile(OTHER_TENANT, only=["fixed_assets"])


@pytest.mark.db
def test_approved_bill_without_entry_is_a_high_ap_alert(tenant, chart):
    subledger_store.create_bill(tenant, "B-77", "Hooli", "2025-05-02", "200.00",
                                status="approved")
    # a draft bill is not an open payable
    subledger_store.create_bill(tenant, "B-78", "Hooli", "2025-05-02", "999.00")

    results = reconciliation.reconcile(tenant)
    ap = next(r for r in results if r.reconciliation_type == "accounts_payable")
    assert ap.status == "mismatch"
    assert ap.subledger_total == Decimal("200.00")
    assert ap.control_balance == Decimal("0.00")
    assert ap.severity == "high"
    assert ap.records_checked == 1

    alert = reconciliation.list_alerts(tenant)[0]
    assert alert["alert_type"] == "ap_mismatch"
    assert alert["variance_percentage"] == Decimal("100.00")


@pytest.mark.db
def test_subledger_documents_respect_closed_periods(tenant, chart, fiscal_year):
    may = next(p for p in fiscal_calendar.list_periods(tenant, 2025) if p["period"] == 5)
    inv = subledger_store.create_invoice(tenant, "INV-5", "Initech", "2025-05-20", "10.00")
    fiscal_calendar.close_period(tenant, may["id"], "carol")

    with pytest.raises(PeriodLockedError):
        subledger_store.create_invoice(tenant, "INV-6", "Initech", "2025-05-21", "10.00")
    with pytest.raises(PeriodLockedError):
        subledger_store.set_invoice_status(tenant, inv["id"], "sent")

    jun = subledger_store.create_invoice(tenant, "INV-7", "Initech", "2025-06-02", "10.00")
    assert subledger_store.set_invoice_status(tenant, jun["id"], "sent")["status"] == "sent"


@pytest.mark.db
def test_invoice_validation(tenant):
    subledger_store.create_invoice(tenant, "INV-1", "Initech", "2025-05-20", "10.00")
    with pytest.raises(ValidationError):
        subledger_store.create_invoice(tenant, "INV-1", "Initech", "2025-05-20", "10.00")
    with pytest.raises(ValidationError):
        subledger_store.create_invoice(tenant, "INV-2", "Initech", "2025-05-20", "-1")
    with pytest.raises(ValidationError):
        subledger_store.create_invoice(tenant, "INV-3", "Initech", "2025-05-20", "1",
                                       status="lost")
    # same number is fine in another tenant
    subledger_store.create_invoice(OTHER_TENANT, "INV-1", "Umbrella", "2025-05-20", "10.00")
