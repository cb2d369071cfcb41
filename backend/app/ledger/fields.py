from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, getcontext
from typing import Any, Optional

from .diagnostics import NON_NUMERIC_FIELD, LedgerDiagnostics

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ZERO = Decimal("0")
MAX_EXPONENT_HEADROOM = 32

# Coalescing chains, in priority order. Each chain is resolved with first_defined().
PAID_FIELDS = ("corrected_paid", "paid_amount", "payment_amount")
AMOUNT_FIELDS = ("amount", "subtotal", "total")
POSTED_BALANCE_FIELDS = ("running_balance", "new_balance", "post_balance")
DATE_FIELDS = ("transaction_date", "created_at", "date")


def first_defined(*values: Any) -> Any:
    """
    Ordered "first defined" resolver: returns the first value that is not None.

    Zero and empty strings count as defined (same as `a ?? b ?? c`), so a stored
    payment of 0 is never replaced by a lower-priority column.
    """
    for v in values:
        if v is not None:
            return v
    return None


def first_defined_field(record: dict, names: tuple[str, ...], default: Any = None) -> Any:
    v = first_defined(*(record.get(n) for n in names))
    return default if v is None else v


def transaction_id_of(record: dict) -> Optional[str]:
    tid = first_defined(record.get("transaction_id"), record.get("id"))
    return None if tid is None else str(tid)


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Returns a finite Decimal, or None when the value is absent or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        out = value
    elif isinstance(value, int):
        out = Decimal(value)
    else:
        s = str(value).strip()
        if not s:
            return None
        try:
            out = Decimal(s)
        except (InvalidOperation, ValueError):
            return None
    if not out.is_finite():
        return None
    # Exponents near the context limit overflow as soon as they are summed into a balance.
    if not out.is_zero() and out.adjusted() > getcontext().Emax - MAX_EXPONENT_HEADROOM:
        return None
    return out


def to_decimal(
    value: Any,
    *,
    field: Optional[str] = None,
    transaction_id: Optional[str] = None,
    diagnostics: Optional[LedgerDiagnostics] = None,
) -> Decimal:
    out = parse_decimal(value)
    if out is not None:
        return out
    # Absent is the normal case for optional money columns; only report real garbage.
    if value is not None and diagnostics is not None:
        diagnostics.record(NON_NUMERIC_FIELD, transaction_id, field=field, detail=repr(value)[:80])
    return ZERO


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_ledger_date(value: Any) -> datetime:
    if value is None or isinstance(value, bool):
        return EPOCH
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float, Decimal)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return EPOCH
    s = str(value).strip()
    if not s:
        return EPOCH
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        return _as_utc(datetime.fromisoformat(s))
    except ValueError:
        return EPOCH


def record_date(record: dict) -> datetime:
    # Unlike money chains, a blank or unparsable date falls through to the next field.
    for name in DATE_FIELDS:
        parsed = parse_ledger_date(record.get(name))
        if parsed != EPOCH:
            return parsed
    return EPOCH
