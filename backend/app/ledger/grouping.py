from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from functools import reduce
from typing import Callable, Iterable, Optional

from .diagnostics import LedgerDiagnostics
from .enrichment import ItemsFetcher, enrich_with_items
from .fields import EPOCH, ZERO, record_date, to_decimal
from .identity import CustomerIdentity, resolve_customer_identity
from .normalizer import SALE, ledger_sort_key, normalize_transactions
from .summary import LedgerSummary, add_summaries, compute_ledger_summary


@dataclass
class CustomerLedgerGroup:
    identity: CustomerIdentity
    summary: LedgerSummary
    # Newest first, for display.
    transactions: list[dict] = field(default_factory=list)

    @property
    def key(self) -> str:
        return self.identity.key

    @property
    def latest_date(self) -> datetime:
        return record_date(self.transactions[0]) if self.transactions else EPOCH

    def to_dict(self) -> dict:
        return {
            "identity": self.identity.to_dict(),
            "summary": self.summary.to_dict(),
            "transactions": self.transactions,
        }


@dataclass
class CustomerLedgerReport:
    groups: list[CustomerLedgerGroup]
    summary: LedgerSummary
    diagnostics: LedgerDiagnostics


def group_by_identity(
    records: Iterable[dict],
    diagnostics: Optional[LedgerDiagnostics] = None,
) -> dict[str, tuple[CustomerIdentity, list[dict]]]:
    buckets: dict[str, tuple[CustomerIdentity, list[dict]]] = {}
    for rec in records or []:
        if not isinstance(rec, dict):
            continue
        identity = resolve_customer_identity(rec, diagnostics)
        bucket = buckets.get(identity.key)
        if bucket is None:
            bucket = (identity, [])
            buckets[identity.key] = bucket
        bucket[1].append(rec)
    return buckets


def _backfill_identity(txn: dict, identity: CustomerIdentity) -> dict:
    if txn.get("customer_name") and txn.get("customer_phone"):
        return txn
    out = dict(txn)
    if not out.get("customer_name"):
        out["customer_name"] = identity.name
    if not out.get("customer_phone"):
        out["customer_phone"] = identity.phone
    return out


def build_customer_ledger_group(
    identity: CustomerIdentity,
    records: Iterable[dict],
    *,
    fetch_items: Optional[ItemsFetcher] = None,
    items_workers: int = 4,
    on_items_error: Optional[Callable[[str, Exception], None]] = None,
    diagnostics: Optional[LedgerDiagnostics] = None,
) -> CustomerLedgerGroup:
    ascending = [_backfill_identity(t, identity) for t in normalize_transactions(records, diagnostics)]
    if fetch_items is not None:
        ascending = enrich_with_items(ascending, fetch_items, max_workers=items_workers, on_error=on_items_error)

    summary = compute_ledger_summary(ascending)
    total_credit = sum(
        (to_decimal(t.get("credit_amount")) for t in ascending if t.get("transaction_type") == SALE),
        ZERO,
    )
    descending = sorted(ascending, key=ledger_sort_key, reverse=True)
    return CustomerLedgerGroup(identity=identity, summary=summary.with_credit(total_credit), transactions=descending)


def aggregate_customer_ledgers(
    records: Iterable[dict],
    *,
    fetch_items: Optional[ItemsFetcher] = None,
    max_workers: int = 1,
    items_workers: int = 4,
    on_items_error: Optional[Callable[[str, Exception], None]] = None,
) -> CustomerLedgerReport:
    """
    Partition a mixed set of raw records by customer identity and build one
    ledger per customer.

    Each group's running balance starts at 0 and is folded sequentially; groups
    share nothing, so with max_workers > 1 they are built on a thread pool.
    The aggregate summary is the field-wise sum of the group summaries, which
    makes outstandingBalance the sum of every customer's own latest balance
    (total receivables), not a balance over the merged stream.
    """
    diagnostics = LedgerDiagnostics()
    buckets = list(group_by_identity(records, diagnostics).values())

    def _build(bucket: tuple[CustomerIdentity, list[dict]]) -> tuple[CustomerLedgerGroup, LedgerDiagnostics]:
        identity, members = bucket
        local = LedgerDiagnostics()
        group = build_customer_ledger_group(
            identity,
            members,
            fetch_items=fetch_items,
            items_workers=items_workers,
            on_items_error=on_items_error,
            diagnostics=local,
        )
        return group, local

    workers = max(1, int(max_workers or 1))
    if workers > 1 and len(buckets) > 1:
        with ThreadPoolExecutor(max_workers=min(workers, len(buckets))) as ex:
            results = list(ex.map(_build, buckets))
    else:
        results = [_build(b) for b in buckets]

    groups = []
    for group, local in results:
        groups.append(group)
        diagnostics.extend(local)

    groups.sort(key=lambda g: (g.latest_date, g.key), reverse=True)
    summary = reduce(add_summaries, (g.summary for g in groups), LedgerSummary(total_credit=ZERO))
    return CustomerLedgerReport(groups=groups, summary=summary, diagnostics=diagnostics)
