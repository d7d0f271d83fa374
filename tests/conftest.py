# tests/conftest.py
import os
import pytest
from sqlalchemy import text

from models.base import Base, init_engine_and_session
from models.users_db import create_user
from models import ledger, subledger, schema  # noqa: F401  (register tables)
from models.coa_store import list_accounts, seed_default_chart
from services.fiscal_calendar import initialize_fiscal_year
from tests.utils import TENANT, login_user


@pytest.fixture(scope="session", autouse=True)
def _set_env(tmp_path_factory):
    # a throwaway SQLite file unless the caller points DATABASE_URL at Postgres
    db_file = tmp_path_factory.mktemp("db") / "ledger.db"
    os.environ.setdefault("DATABASE_URL", f"sqlite:///{db_file}")
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("METRICS_ENABLED", "0")
    os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")
    os.environ.setdefault("LEDGER_BASE_CURRENCY", "USD")
    # fixtures create their own users
    os.environ["ADMIN_PASSWORD"] = ""
    yield


@pytest.fixture(scope="session")
def db_engine(_set_env):
    engine, _Session = init_engine_and_session()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="session")
def app(db_engine):
    from app import create_app
    return create_app({"TESTING": True})


@pytest.fixture(autouse=True)
def _db_clean(db_engine):
    with db_engine.begin() as conn:
        # self-references first, RESTRICT would refuse a bulk delete on Postgres
        conn.execute(text("UPDATE journal_entries SET reversal_of = NULL"))
        conn.execute(text("UPDATE accounts SET parent_id = NULL"))
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture
def tenant():
    return TENANT


@pytest.fixture
def chart(tenant):
    """Seeded default chart for the test tenant, as {code: account_id}."""
    seed_default_chart(tenant)
    return {a["code"]: a["id"] for a in list_accounts(tenant)}


@pytest.fixture
def fiscal_year(tenant):
    initialize_fiscal_year(tenant, 2025, actor="tester")
    return 2025


@pytest.fixture
def admin_user(client, tenant):
    create_user("admin", "admin-pass", role="admin", tenant_id=tenant)
    resp = login_user(client, "admin", "admin-pass")
    assert resp.status_code == 200
    yield "admin"
    client.post("/logout")


@pytest.fixture
def regular_user(client, tenant):
    create_user("bob", "bob-pass", role="user", tenant_id=tenant)
    resp = login_user(client, "bob", "bob-pass")
    assert resp.status_code == 200
    yield "bob"
    client.post("/logout")
