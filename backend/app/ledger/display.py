from __future__ import annotations

from .normalizer import RETURN, SETTLEMENT
from .summary import COMPLETED, PARTIAL, PENDING, classify_payment_state

PAYMENT_STATUS_LABELS = {
    "COMPLETED": "Paid",
    "PARTIAL": "Partial Payment",
    "PENDING": "Credit",
    "CANCELLED": "Cancelled",
}

_STATE_TO_STATUS = {
    COMPLETED: "COMPLETED",
    PARTIAL: "PARTIAL",
    PENDING: "PENDING",
}


def transaction_type_display(txn: dict) -> str:
    ttype = str(txn.get("transaction_type") or "").upper()
    if ttype == RETURN:
        return "Return"
    if ttype == SETTLEMENT:
        return "Settlement"
    scope = str(txn.get("scope_type") or "").upper()
    if scope == "WAREHOUSE":
        return "Retailer Sale"
    if scope == "BRANCH":
        return "Walk-in Sale"
    return "Sale"


def payment_status_display(txn: dict) -> str:
    status = str(txn.get("payment_status") or "").strip().upper()
    if not status:
        status = _STATE_TO_STATUS.get(classify_payment_state(txn) or "", "")
    return PAYMENT_STATUS_LABELS.get(status, status)


def decorate_for_display(txn: dict) -> dict:
    return {
        **txn,
        "transaction_type_display": transaction_type_display(txn),
        "payment_status_display": payment_status_display(txn),
    }
