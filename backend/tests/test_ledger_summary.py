from decimal import Decimal

from backend.app.ledger.normalizer import normalize_transactions
from backend.app.ledger.summary import (
    COMPLETED,
    PARTIAL,
    PENDING,
    LedgerSummary,
    add_summaries,
    classify_payment_state,
    compute_ledger_summary,
)


def test_empty_summary_is_all_zero():
    s = compute_ledger_summary([])
    assert s == LedgerSummary()
    assert s.outstanding_balance == Decimal("0")
    assert "totalCredit" not in s.to_dict()


def test_classification_rules():
    assert classify_payment_state({"balance": 0, "actual_payment": 0}) == COMPLETED
    assert classify_payment_state({"balance": -5, "actual_payment": 50}) == COMPLETED
    assert classify_payment_state({"balance": 60, "actual_payment": 40, "payment_method": "CASH"}) == PARTIAL
    assert classify_payment_state({"balance": 100, "actual_payment": 0, "payment_method": "CASH"}) == PENDING
    # FULLY_CREDIT takes precedence over an inconsistent payment
    assert classify_payment_state({"balance": 100, "actual_payment": 30, "payment_method": "FULLY_CREDIT"}) == PENDING
    assert classify_payment_state({"balance": 100, "actual_payment": -10, "payment_method": "CASH"}) is None


def test_summary_over_normalized_ledger():
    ledger = normalize_transactions(
        [
            {"id": "1", "transaction_date": "2026-01-01", "amount": 100, "paid_amount": 40, "payment_method": "CASH"},
            {"id": "2", "transaction_date": "2026-01-02", "amount": 50, "paid_amount": 0, "payment_method": "FULLY_CREDIT"},
            {"id": "3", "transaction_date": "2026-01-03", "amount": 10, "paid_amount": 200, "payment_method": "CASH"},
        ]
    )
    s = compute_ledger_summary(ledger)
    assert s.total_transactions == 3
    assert s.total_amount == Decimal("160")
    assert s.total_paid == Decimal("240")
    assert s.outstanding_balance == Decimal("-80")
    assert s.partial_transactions == 1
    assert s.pending_transactions == 1
    assert s.completed_transactions == 1

    d = s.to_dict()
    assert d["outstandingBalance"] == Decimal("-80")
    assert d["completedTransactions"] == 1


def test_outstanding_balance_reads_last_element():
    ledger = normalize_transactions(
        [
            {"id": "1", "transaction_date": "2026-01-01", "amount": 100, "paid_amount": 0, "payment_method": "CASH"},
            {"id": "2", "transaction_date": "2026-01-02", "amount": 20, "paid_amount": 0, "payment_method": "CASH"},
        ]
    )
    assert compute_ledger_summary(ledger).outstanding_balance == Decimal("120")
    # Descending input is a caller error: it yields the oldest balance.
    assert compute_ledger_summary(list(reversed(ledger))).outstanding_balance == Decimal("100")


def test_add_summaries_is_field_wise():
    a = LedgerSummary(total_transactions=2, total_amount=Decimal("10"), outstanding_balance=Decimal("4"), pending_transactions=1)
    b = LedgerSummary(
        total_transactions=1,
        total_amount=Decimal("5"),
        outstanding_balance=Decimal("-1"),
        completed_transactions=1,
        total_credit=Decimal("3"),
    )
    s = add_summaries(a, b)
    assert s.total_transactions == 3
    assert s.total_amount == Decimal("15")
    assert s.outstanding_balance == Decimal("3")
    assert s.pending_transactions == 1
    assert s.completed_transactions == 1
    assert s.total_credit == Decimal("3")
    assert add_summaries(LedgerSummary(), LedgerSummary()).total_credit is None
