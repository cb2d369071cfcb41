from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from .diagnostics import NON_NUMERIC_FIELD, UNKNOWN_TRANSACTION_TYPE, LedgerDiagnostics
from .fields import (
    AMOUNT_FIELDS,
    PAID_FIELDS,
    POSTED_BALANCE_FIELDS,
    ZERO,
    first_defined,
    first_defined_field,
    parse_decimal,
    record_date,
    to_decimal,
    transaction_id_of,
)

SALE = "SALE"
RETURN = "RETURN"
SETTLEMENT = "SETTLEMENT"
TRANSACTION_TYPES = (SALE, RETURN, SETTLEMENT)

FULLY_CREDIT = "FULLY_CREDIT"
REFUND = "REFUND"
OUTSTANDING_SETTLEMENT = "OUTSTANDING_SETTLEMENT"

# Payment methods the tills emit. Anything else still normalizes, it is just reported.
KNOWN_PAYMENT_METHODS = {
    "CASH",
    "CARD",
    "BANK_TRANSFER",
    "MOBILE_PAYMENT",
    "CHEQUE",
    "PARTIAL_PAYMENT",
    FULLY_CREDIT,
    REFUND,
}


def _code(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip().upper()
    return s or None


def ledger_sort_key(record: dict) -> tuple[datetime, str]:
    # id breaks ties between same-timestamp rows so every input permutation sorts the same way.
    return (record_date(record), transaction_id_of(record) or "")


def _declared_type(record: dict) -> Optional[str]:
    return _code(first_defined(record.get("transaction_type"), record.get("type")))


def normalize_step(
    running_balance: Decimal,
    record: dict,
    diagnostics: Optional[LedgerDiagnostics] = None,
) -> tuple[Decimal, dict]:
    """
    One fold step: (balance before, raw record) -> (balance after, normalized record).

    Pure: depends only on the previous running balance and the record's own
    fields. The input dict is not mutated.
    """
    tid = transaction_id_of(record)

    paid = to_decimal(
        first_defined_field(record, PAID_FIELDS, 0),
        field="paid_amount",
        transaction_id=tid,
        diagnostics=diagnostics,
    )

    raw_credit = record.get("credit_amount")
    credit_value = parse_decimal(raw_credit)
    has_explicit_credit = credit_value is not None
    credit = credit_value if has_explicit_credit else ZERO
    if raw_credit is not None and not has_explicit_credit and diagnostics is not None:
        diagnostics.record(NON_NUMERIC_FIELD, tid, field="credit_amount", detail=repr(raw_credit)[:80])

    amount = to_decimal(
        first_defined_field(record, AMOUNT_FIELDS, 0),
        field="amount",
        transaction_id=tid,
        diagnostics=diagnostics,
    )

    old_balance = running_balance
    current_bill_amount = amount
    total_amount_due = old_balance + current_bill_amount
    actual_payment = paid

    payment_method = _code(record.get("payment_method"))
    payment_type = _code(record.get("payment_type"))

    if payment_method == FULLY_CREDIT and payment_type != OUTSTANDING_SETTLEMENT:
        actual_payment = ZERO

    declared = _declared_type(record)
    if declared:
        normalized_type = declared
        if declared not in TRANSACTION_TYPES and diagnostics is not None:
            diagnostics.record(UNKNOWN_TRANSACTION_TYPE, tid, field="transaction_type", detail=declared)
    else:
        normalized_type = RETURN if payment_method == REFUND else SALE
        if payment_method not in KNOWN_PAYMENT_METHODS and diagnostics is not None:
            diagnostics.record(UNKNOWN_TRANSACTION_TYPE, tid, field="payment_method", detail=payment_method)

    if payment_type == OUTSTANDING_SETTLEMENT or normalized_type == SETTLEMENT:
        current_bill_amount = ZERO
        total_amount_due = old_balance
        actual_payment = paid
        posted = parse_decimal(first_defined_field(record, POSTED_BALANCE_FIELDS))
        if posted is not None:
            new_balance = posted
        elif has_explicit_credit:
            new_balance = credit
        else:
            new_balance = old_balance - actual_payment
        normalized_type = SETTLEMENT
    elif normalized_type == RETURN or payment_method == REFUND:
        new_balance = old_balance - abs(amount)
        normalized_type = RETURN
    else:
        new_balance = (old_balance + current_bill_amount) - actual_payment
        normalized_type = SALE

    normalized = {
        **record,
        "amount": amount,
        "old_balance": old_balance,
        "current_bill_amount": current_bill_amount,
        "total_amount": total_amount_due,
        "actual_payment": actual_payment,
        "corrected_paid": actual_payment,
        "running_balance": new_balance,
        "balance": new_balance,
        "transaction_type": normalized_type,
    }
    return new_balance, normalized


def normalize_transactions(
    records: Iterable[dict],
    diagnostics: Optional[LedgerDiagnostics] = None,
) -> list[dict]:
    """
    Sort raw records ascending by date and fold them into a running-balance ledger.

    The balance always starts at 0 for the given set, so callers decide the scope
    (one customer, or a mixed set). Treat this as a one-shot raw -> normalized
    transform: feeding the output back in re-reads the derived corrected_paid,
    amount and running_balance fields instead of the raw columns, so the
    balances are not guaranteed to match.
    """
    ordered = sorted((r for r in (records or []) if isinstance(r, dict)), key=ledger_sort_key)
    balance = ZERO
    out: list[dict] = []
    for rec in ordered:
        balance, normalized = normalize_step(balance, rec, diagnostics)
        out.append(normalized)
    return out
