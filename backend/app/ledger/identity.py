from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError

from .diagnostics import MALFORMED_EMBEDDED_DOCUMENT, MISSING_IDENTITY, LedgerDiagnostics
from .fields import transaction_id_of

UNKNOWN_CUSTOMER = "Unknown Customer"
KEY_SEPARATOR = "|||"


def _scalar_to_str(v):
    if v is None:
        return None
    if isinstance(v, (dict, list)):
        return None
    return str(v)


OptionalText = Annotated[Optional[str], BeforeValidator(_scalar_to_str)]


class EmbeddedCustomerInfo(BaseModel):
    # sales.customer_info: free-form JSON captured at the till. Only name/phone matter here.
    model_config = ConfigDict(extra="ignore")

    name: OptionalText = None
    phone: OptionalText = None


@dataclass(frozen=True)
class CustomerIdentity:
    name: str = UNKNOWN_CUSTOMER
    phone: Optional[str] = None

    @property
    def key(self) -> str:
        return self.name + KEY_SEPARATOR + (self.phone or "")

    def to_dict(self) -> dict:
        return {"name": self.name, "phone": self.phone}


def _clean(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v)
    return s if s.strip() else None


def parse_embedded_customer(
    raw: Any,
    *,
    transaction_id: Optional[str] = None,
    diagnostics: Optional[LedgerDiagnostics] = None,
) -> Optional[EmbeddedCustomerInfo]:
    """
    Safe-parse of the embedded customer document. Accepts a JSON string or an
    already-decoded mapping (psycopg hands jsonb back as dict). Returns None for
    anything unusable.
    """
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        if isinstance(raw, str):
            if not raw.strip():
                return None
            decoded = json.loads(raw)
        else:
            decoded = raw
        if not isinstance(decoded, dict):
            raise ValueError(f"expected object, got {type(decoded).__name__}")
        return EmbeddedCustomerInfo.model_validate(decoded)
    except (ValueError, TypeError, RecursionError, ValidationError) as ex:
        # json.JSONDecodeError is a ValueError; deeply nested input raises RecursionError.
        if diagnostics is not None:
            diagnostics.record(MALFORMED_EMBEDDED_DOCUMENT, transaction_id, field="customer_info", detail=str(ex)[:120])
        return None


def resolve_customer_identity(record: dict, diagnostics: Optional[LedgerDiagnostics] = None) -> CustomerIdentity:
    if not isinstance(record, dict):
        record = {}
    tid = transaction_id_of(record)
    name = _clean(record.get("customer_name"))
    phone = _clean(record.get("customer_phone"))

    if name is None or phone is None:
        info = parse_embedded_customer(record.get("customer_info"), transaction_id=tid, diagnostics=diagnostics)
        if info is not None:
            if name is None:
                name = _clean(info.name)
            if phone is None:
                phone = _clean(info.phone)

    if name is None and phone is None and diagnostics is not None:
        diagnostics.record(MISSING_IDENTITY, tid)

    return CustomerIdentity(name=name if name is not None else UNKNOWN_CUSTOMER, phone=phone)
