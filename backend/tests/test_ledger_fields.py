from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from backend.app.ledger.diagnostics import NON_NUMERIC_FIELD, LedgerDiagnostics
from backend.app.ledger.fields import (
    EPOCH,
    PAID_FIELDS,
    first_defined,
    first_defined_field,
    parse_decimal,
    parse_ledger_date,
    record_date,
    to_decimal,
)


def test_first_defined_keeps_zero_and_empty_values():
    assert first_defined(None, 0, 5) == 0
    assert first_defined(None, "", "x") == ""
    assert first_defined(None, None) is None
    assert first_defined_field({"paid_amount": 0, "payment_amount": 30}, PAID_FIELDS) == 0
    assert first_defined_field({"payment_amount": 30}, PAID_FIELDS) == 30
    assert first_defined_field({}, PAID_FIELDS, 0) == 0


def test_parse_decimal_accepts_numbers_and_numeric_strings():
    assert parse_decimal(Decimal("1.50")) == Decimal("1.50")
    assert parse_decimal(7) == Decimal("7")
    assert parse_decimal(" 12.25 ") == Decimal("12.25")
    assert parse_decimal(2.5) == Decimal("2.5")


def test_parse_decimal_rejects_garbage():
    assert parse_decimal(None) is None
    assert parse_decimal(True) is None
    assert parse_decimal("") is None
    assert parse_decimal("abc") is None
    assert parse_decimal("NaN") is None
    assert parse_decimal("Infinity") is None


def test_to_decimal_reports_non_numeric_but_not_missing():
    diag = LedgerDiagnostics()
    assert to_decimal(None, field="amount", transaction_id="t1", diagnostics=diag) == Decimal("0")
    assert not diag

    assert to_decimal("12,50", field="amount", transaction_id="t2", diagnostics=diag) == Decimal("0")
    assert diag.counts() == {NON_NUMERIC_FIELD: 1}
    issue = diag.issues[0]
    assert issue.transaction_id == "t2"
    assert issue.field == "amount"


def test_parse_ledger_date_variants():
    assert parse_ledger_date(None) == EPOCH
    assert parse_ledger_date("not a date") == EPOCH
    assert parse_ledger_date("2026-01-05T10:00:00Z") == datetime(2026, 1, 5, 10, tzinfo=timezone.utc)
    assert parse_ledger_date(date(2026, 1, 5)) == datetime(2026, 1, 5, tzinfo=timezone.utc)
    # naive datetimes are taken as UTC
    assert parse_ledger_date(datetime(2026, 1, 5, 8)) == datetime(2026, 1, 5, 8, tzinfo=timezone.utc)
    beirut = timezone(timedelta(hours=2))
    assert parse_ledger_date(datetime(2026, 1, 5, 10, tzinfo=beirut)) == datetime(2026, 1, 5, 8, tzinfo=timezone.utc)
    assert parse_ledger_date(0) == EPOCH


def test_record_date_fallback_chain():
    assert record_date({"transaction_date": "2026-02-01", "created_at": "2026-01-01"}) == datetime(
        2026, 2, 1, tzinfo=timezone.utc
    )
    assert record_date({"created_at": "2026-01-01"}) == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert record_date({"date": "2025-12-31"}) == datetime(2025, 12, 31, tzinfo=timezone.utc)
    assert record_date({}) == EPOCH


def test_out_of_range_exponents_are_non_numeric():
    assert parse_decimal("1e999999999") is None
    assert parse_decimal(Decimal("-9E+999990")) is None
    assert parse_decimal("1e6") == Decimal("1000000")
    assert parse_decimal("0E+999999999") == Decimal("0")

    diag = LedgerDiagnostics()
    assert to_decimal("1e999999999", field="amount", transaction_id="big", diagnostics=diag) == Decimal("0")
    assert diag.counts() == {NON_NUMERIC_FIELD: 1}


def test_record_date_skips_blank_and_unparsable_dates():
    assert record_date({"transaction_date": "", "created_at": "2026-01-05"}) == datetime(2026, 1, 5, tzinfo=timezone.utc)
    assert record_date({"transaction_date": "garbage", "created_at": None, "date": "2026-01-07"}) == datetime(
        2026, 1, 7, tzinfo=timezone.utc
    )
    assert record_date({"transaction_date": "  ", "created_at": "nope"}) == EPOCH
