# services/subledgers/base.py
"""
Interface every subledger implements so the reconciliation engine can tie
it to a control account without knowing its tables.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol


@dataclass
class CheckResult:
    reconciliation_type: str      # subledger name, e.g. 'accounts_receivable'
    status: str                   # 'balanced' | 'mismatch'
    subledger_total: Decimal
    control_balance: Decimal
    variance: Decimal             # subledger_total - control_balance
    severity: Optional[str] = None
    alert_id: Optional[int] = None
    records_checked: int = 0


class Subledger(Protocol):
    name: str                     # 'accounts_receivable'
    alert_type: str               # 'ar_mismatch'
    control_category: str         # account category of the control account
    label: str                    # 'Accounts Receivable'

    def subledger_total(self, tenant_id: str) -> Decimal:
        """Sum of the open documents that should sit in the control account."""

    def records_checked(self, tenant_id: str) -> int:
        """How many documents made up the total."""
