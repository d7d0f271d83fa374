# services/subledgers/registry.py
from services.subledgers.base import Subledger
from services.subledgers.bills import BillSubledger
from services.subledgers.invoices import InvoiceSubledger

# add new subledgers here; reconciliation walks this list in order
_REGISTERED: tuple[Subledger, ...] = (
    InvoiceSubledger(),
    BillSubledger(),
)


def registered_subledgers() -> tuple[Subledger, ...]:
    return _REGISTERED


def get_subledger(name: str) -> Subledger:
    for sl in _REGISTERED:
        if sl.name == name:
            return sl
    raise KeyError(f"Unknown subledger: {name}")
