# tests/utils.py
from models import journal_store

TENANT = "acme"
OTHER_TENANT = "globex"


def login_user(client, username, password):
    return client.post("/login", json={"username": username, "password": password})


def draft(tenant, day, lines, description="test entry", **kw):
    """Create a draft with (account_id, debit, credit) lines and return its id."""
    entry_id = journal_store.create_draft_entry(tenant, day, description, **kw)
    if lines:
        journal_store.add_lines(tenant, entry_id, [
            {"account_id": a, "debit": dr, "credit": cr} for a, dr, cr in lines
        ])
    return entry_id
