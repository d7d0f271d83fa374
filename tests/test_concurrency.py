import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from models import coa_store, journal_store
from services import gl_posting
from services.errors import AlreadyPostedError, ConcurrencyConflictError
from tests.utils import draft


def _post_with_retry(tenant, entry_id, attempts=20):
    """What a well-behaved caller does with ConcurrencyConflictError."""
    for attempt in range(attempts):
        try:
            return gl_posting.post_entry(tenant, entry_id, "worker")
        except ConcurrencyConflictError:
            time.sleep(0.01 * (attempt + 1))
    raise AssertionError(f"entry {entry_id} never posted")


@pytest.mark.db
def test_concurrent_posts_get_distinct_gapless_numbers(tenant, chart):
    n = 100
    ids = [draft(tenant, "2025-06-15", [(chart["1000"], "1.25", 0), (chart["4000"], 0, "1.25")])
           for _ in range(n)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda eid: _post_with_retry(tenant, eid), ids))

    numbers = [r["entry_number"] for r in results]
    assert len(set(numbers)) == n
    assert set(numbers) == {f"JE-2025-{i:04d}" for i in range(1, n + 1)}

    assert coa_store.get_account(tenant, chart["1000"])["balance"] == Decimal("125.00")
    assert coa_store.get_account(tenant, chart["4000"])["balance"] == Decimal("125.00")


@pytest.mark.db
def test_racing_posts_of_one_entry_apply_once(tenant, chart):
    eid = draft(tenant, "2025-06-15", [(chart["6000"], "40.00", 0), (chart["1010"], 0, "40.00")])

    def attempt(_):
        try:
            return gl_posting.post_entry(tenant, eid, "worker")["entry_number"]
        except (AlreadyPostedError, ConcurrencyConflictError) as e:
            return e.code

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(attempt, range(6)))

    assert outcomes.count("JE-2025-0001") == 1
    assert all(o in ("JE-2025-0001", "already_posted", "concurrency_conflict") for o in outcomes)
    assert coa_store.get_account(tenant, chart["6000"])["balance"] == Decimal("40.00")
    assert journal_store.get_entry(tenant, eid)["entry_number"] == "JE-2025-0001"
