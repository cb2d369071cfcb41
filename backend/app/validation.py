from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


# Codes mirror the `sales.payment_status` / ledger transaction types stored by the tills.
LedgerTransactionType = Annotated[Literal["SALE", "RETURN", "SETTLEMENT"], BeforeValidator(_to_upper_str)]
LedgerPaymentStatus = Annotated[
    Literal["COMPLETED", "PARTIAL", "PENDING", "CANCELLED"],
    BeforeValidator(_to_upper_str),
]


# Payment methods are free-form upper-case identifiers (CASH, FULLY_CREDIT, REFUND, ...).
# Keep a tight, safe character set so filters stay stable identifiers.
LedgerPaymentMethod = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[A-Z0-9][A-Z0-9_-]*$"),
]


ExportFormat = Annotated[Literal["json", "csv"], BeforeValidator(_to_lower_str)]
