from decimal import Decimal

from backend.app.ledger.display import decorate_for_display, payment_status_display, transaction_type_display


def test_transaction_type_labels():
    assert transaction_type_display({"transaction_type": "SALE", "scope_type": "WAREHOUSE"}) == "Retailer Sale"
    assert transaction_type_display({"transaction_type": "SALE", "scope_type": "branch"}) == "Walk-in Sale"
    assert transaction_type_display({"transaction_type": "SALE"}) == "Sale"
    assert transaction_type_display({"transaction_type": "RETURN", "scope_type": "BRANCH"}) == "Return"
    assert transaction_type_display({"transaction_type": "SETTLEMENT"}) == "Settlement"


def test_payment_status_labels():
    assert payment_status_display({"payment_status": "COMPLETED"}) == "Paid"
    assert payment_status_display({"payment_status": "partial"}) == "Partial Payment"
    assert payment_status_display({"payment_status": "PENDING"}) == "Credit"
    assert payment_status_display({"payment_status": "CANCELLED"}) == "Cancelled"
    assert payment_status_display({"payment_status": "ON_HOLD"}) == "ON_HOLD"


def test_payment_status_derived_from_balance_when_missing():
    assert payment_status_display({"balance": Decimal("0"), "actual_payment": Decimal("0")}) == "Paid"
    assert payment_status_display({"balance": Decimal("40"), "actual_payment": Decimal("0")}) == "Credit"
    assert payment_status_display({"balance": Decimal("40"), "actual_payment": Decimal("10")}) == "Partial Payment"


def test_decorate_keeps_fields():
    txn = {"id": "1", "transaction_type": "SALE", "payment_status": "PENDING", "balance": Decimal("5")}
    out = decorate_for_display(txn)
    assert out["id"] == "1"
    assert out["transaction_type_display"] == "Sale"
    assert out["payment_status_display"] == "Credit"
    assert "transaction_type_display" not in txn
