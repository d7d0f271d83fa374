import pytest

from models import coa_store
from services.errors import NotFoundError, ValidationError
from tests.utils import OTHER_TENANT, draft


@pytest.mark.db
def test_seed_default_chart_is_idempotent(tenant):
    assert coa_store.seed_default_chart(tenant) == len(coa_store.default_chart())
    assert coa_store.seed_default_chart(tenant) == 0
    codes = [a["code"] for a in coa_store.list_accounts(tenant)]
    assert codes == sorted(codes)
    ar = coa_store.find_account(tenant, "1200")
    assert ar["category"] == "receivable" and ar["type"] == "asset"


@pytest.mark.db
def test_create_account_validates_code_and_type(tenant):
    coa_store.create_account(tenant, "7000", "Travel", "expense")
    with pytest.raises(ValidationError):
        coa_store.create_account(tenant, "7000", "Travel again", "expense")
    with pytest.raises(ValidationError):
        coa_store.create_account(tenant, "7100", "Mystery", "income")
    with pytest.raises(ValidationError):
        coa_store.create_account(tenant, "", "No code", "asset")


@pytest.mark.db
def test_code_taken_between_check_and_insert(tenant, monkeypatch):
    coa_store.create_account(tenant, "7000", "Travel", "expense")
    # another writer inserted the code after our lookup
    monkeypatch.setattr(coa_store, "_code_taken", lambda s, tenant_id, code: False)
    with pytest.raises(ValidationError, match="7000 already exists"):
        coa_store.create_account(tenant, "7000", "Travel again", "expense")
    names = [a["name"] for a in coa_store.list_accounts(tenant) if a["code"] == "7000"]
    assert names == ["Travel"]

@pytest.mark.db
def test_same_code_allowed_in_another_tenant(tenant):
    coa_store.create_account(tenant, "1000", "Cash", "asset", category="cash")
    other = coa_store.create_account(OTHER_TENANT, "1000", "Cash", "asset", category="cash")
    assert other["tenant_id"] == OTHER_TENANT


@pytest.mark.db
def test_parent_cycles_are_rejected(tenant):
    a = coa_store.create_account(tenant, "1100", "Current Assets", "asset")
    b = coa_store.create_account(tenant, "1110", "Petty Cash", "asset", parent_id=a["id"])
    c = coa_store.create_account(tenant, "1111", "Petty Cash Drawer", "asset", parent_id=b["id"])

    with pytest.raises(ValidationError):
        coa_store.update_account(tenant, a["id"], parent_id=c["id"])
    with pytest.raises(ValidationError):
        coa_store.update_account(tenant, a["id"], parent_id=a["id"])

    moved = coa_store.update_account(tenant, c["id"], parent_id=a["id"])
    assert moved["parent_id"] == a["id"]


@pytest.mark.db
def test_parent_must_belong_to_tenant(tenant):
    foreign = coa_store.create_account(OTHER_TENANT, "1100", "Assets", "asset")
    with pytest.raises(NotFoundError):
        coa_store.create_account(tenant, "1110", "Child", "asset", parent_id=foreign["id"])


@pytest.mark.db
def test_type_is_frozen_once_referenced(tenant, chart):
    spare = coa_store.create_account(tenant, "6100", "Spare", "expense")
    assert coa_store.update_account(tenant, spare["id"], type="asset")["type"] == "asset"

    draft(tenant, "2025-03-01", [(chart["6000"], 10, 0), (chart["1000"], 0, 10)])
    with pytest.raises(ValidationError):
        coa_store.update_account(tenant, chart["6000"], type="liability")
    # renaming is still fine
    assert coa_store.update_account(tenant, chart["6000"], name="Opex")["name"] == "Opex"


@pytest.mark.db
def test_deactivated_account_hidden_and_unusable(tenant, chart):
    coa_store.deactivate_account(tenant, chart["2200"])
    codes = {a["code"] for a in coa_store.list_accounts(tenant)}
    assert "2200" not in codes
    assert "2200" in {a["code"] for a in coa_store.list_accounts(tenant, include_inactive=True)}

    with pytest.raises(ValidationError):
        draft(tenant, "2025-03-01", [(chart["2200"], 0, 10), (chart["1000"], 10, 0)])


@pytest.mark.db
def test_accounts_are_tenant_scoped(tenant, chart):
    with pytest.raises(NotFoundError):
        coa_store.get_account(OTHER_TENANT, chart["1000"])
    assert coa_store.list_accounts(OTHER_TENANT) == []


@pytest.mark.db
def test_update_rejects_unknown_fields(tenant, chart):
    with pytest.raises(ValidationError):
        coa_store.update_account(tenant, chart["1000"], balance=100)
