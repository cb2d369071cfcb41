from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import Optional, Sequence

from .fields import PAID_FIELDS, ZERO, first_defined, first_defined_field, to_decimal
from .normalizer import FULLY_CREDIT

COMPLETED = "completed"
PENDING = "pending"
PARTIAL = "partial"


@dataclass(frozen=True)
class LedgerSummary:
    total_transactions: int = 0
    total_amount: Decimal = ZERO
    total_paid: Decimal = ZERO
    outstanding_balance: Decimal = ZERO
    completed_transactions: int = 0
    pending_transactions: int = 0
    partial_transactions: int = 0
    # Only the grouping aggregator fills this in.
    total_credit: Optional[Decimal] = field(default=None)

    def with_credit(self, total_credit: Decimal) -> "LedgerSummary":
        return replace(self, total_credit=total_credit)

    def to_dict(self) -> dict:
        out = {
            "totalTransactions": self.total_transactions,
            "totalAmount": self.total_amount,
            "totalPaid": self.total_paid,
            "outstandingBalance": self.outstanding_balance,
            "completedTransactions": self.completed_transactions,
            "pendingTransactions": self.pending_transactions,
            "partialTransactions": self.partial_transactions,
        }
        if self.total_credit is not None:
            out["totalCredit"] = self.total_credit
        return out


def paid_of(txn: dict) -> Decimal:
    return to_decimal(first_defined_field(txn, PAID_FIELDS, 0))


def actual_payment_of(txn: dict) -> Decimal:
    return to_decimal(first_defined(txn.get("actual_payment"), first_defined_field(txn, PAID_FIELDS, 0)))


def balance_of(txn: dict) -> Decimal:
    return to_decimal(first_defined(txn.get("balance"), txn.get("running_balance")))


def classify_payment_state(txn: dict) -> Optional[str]:
    """
    completed: nothing owed after this transaction (balance <= 0).
    pending:   owed, and nothing was paid on it (or it was a FULLY_CREDIT sale).
    partial:   owed, with a real payment on a non-credit method.

    FULLY_CREDIT wins over a stray non-zero payment: such rows are pending.
    A negative payment with money still owed matches none of the rules (None).
    """
    if balance_of(txn) <= 0:
        return COMPLETED
    method = str(txn.get("payment_method") or "").strip().upper()
    actual = actual_payment_of(txn)
    if method == FULLY_CREDIT or actual == 0:
        return PENDING
    if actual > 0:
        return PARTIAL
    return None


def compute_ledger_summary(transactions: Sequence[dict]) -> LedgerSummary:
    """
    Totals for a normalized ledger.

    Caller contract: `transactions` must be in ascending chronological order.
    outstanding_balance is read off the last element; it is not recomputed, so a
    descending list silently yields the oldest balance instead.
    """
    txns = list(transactions or [])
    if not txns:
        return LedgerSummary()

    states = [classify_payment_state(t) for t in txns]
    return LedgerSummary(
        total_transactions=len(txns),
        total_amount=sum((to_decimal(t.get("amount")) for t in txns), ZERO),
        total_paid=sum((paid_of(t) for t in txns), ZERO),
        outstanding_balance=balance_of(txns[-1]),
        completed_transactions=states.count(COMPLETED),
        pending_transactions=states.count(PENDING),
        partial_transactions=states.count(PARTIAL),
    )


def add_summaries(a: LedgerSummary, b: LedgerSummary) -> LedgerSummary:
    """Field-wise sum. total_credit stays None only when both sides lack it."""
    values = {}
    for f in fields(LedgerSummary):
        left = getattr(a, f.name)
        right = getattr(b, f.name)
        if f.name == "total_credit":
            values[f.name] = None if left is None and right is None else (left or ZERO) + (right or ZERO)
        else:
            values[f.name] = left + right
    return LedgerSummary(**values)
