from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional, Sequence

from .fields import transaction_id_of
from .normalizer import SALE

ItemsFetcher = Callable[[str], list]


def enrich_with_items(
    transactions: Sequence[dict],
    fetch_items: ItemsFetcher,
    *,
    max_workers: int = 4,
    on_error: Optional[Callable[[str, Exception], None]] = None,
) -> list[dict]:
    """
    Attach `items` (sale line detail) to every transaction.

    Runs after balances are final and never feeds back into them, so the fetches
    are issued concurrently. Only sales carry line items; returns and settlements
    get an empty list. A failed fetch also yields an empty list.
    """
    txns = list(transactions or [])
    items_by_id: dict[str, list] = {}

    def _sale_id(t: dict) -> Optional[str]:
        if str(t.get("transaction_type") or "").upper() != SALE:
            return None
        return transaction_id_of(t)

    sale_ids = sorted({tid for tid in map(_sale_id, txns) if tid is not None})

    if sale_ids:
        # Keep a cap on concurrency; each fetch may hold its own DB connection.
        workers = max(1, min(int(max_workers or 1), 16, len(sale_ids)))
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futs = {ex.submit(fetch_items, tid): tid for tid in sale_ids}
            for fut in as_completed(futs):
                tid = futs[fut]
                try:
                    items_by_id[tid] = list(fut.result() or [])
                except Exception as e:
                    items_by_id[tid] = []
                    if on_error is not None:
                        on_error(tid, e)

    return [{**t, "items": items_by_id.get(_sale_id(t) or "", [])} for t in txns]
