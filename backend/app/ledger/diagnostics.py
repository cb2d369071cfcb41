from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional

MISSING_IDENTITY = "missing_identity"
MALFORMED_EMBEDDED_DOCUMENT = "malformed_embedded_document"
NON_NUMERIC_FIELD = "non_numeric_field"
UNKNOWN_TRANSACTION_TYPE = "unknown_transaction_type"


@dataclass(frozen=True)
class LedgerIssue:
    kind: str
    transaction_id: Optional[str] = None
    field: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "transaction_id": self.transaction_id,
            "field": self.field,
            "detail": self.detail,
        }


@dataclass
class LedgerDiagnostics:
    """
    Collects the default substitutions the engine makes for degraded input.

    Nothing in the engine raises on bad data; instead every fallback (missing
    customer identity, unreadable customer_info, non-numeric money, unknown
    transaction type) lands here so callers can log or assert on it.
    One instance per call; never shared between groups processed in parallel.
    """

    issues: list[LedgerIssue] = field(default_factory=list)

    def record(self, kind: str, transaction_id: Any = None, field: Optional[str] = None, detail: Optional[str] = None) -> None:
        tid = str(transaction_id) if transaction_id is not None else None
        self.issues.append(LedgerIssue(kind=kind, transaction_id=tid, field=field, detail=detail))

    def extend(self, other: Optional["LedgerDiagnostics"]) -> None:
        if other is not None:
            self.issues.extend(other.issues)

    def counts(self) -> dict[str, int]:
        return dict(Counter(i.kind for i in self.issues))

    def of_kind(self, kind: str) -> list[LedgerIssue]:
        return [i for i in self.issues if i.kind == kind]

    def to_list(self) -> list[dict]:
        return [i.to_dict() for i in self.issues]

    def __len__(self) -> int:
        return len(self.issues)

    def __bool__(self) -> bool:
        return bool(self.issues)
