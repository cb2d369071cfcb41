import threading

from backend.app.ledger.enrichment import enrich_with_items


def test_only_sales_are_fetched():
    seen = []
    lock = threading.Lock()

    def fetch(tid):
        with lock:
            seen.append(tid)
        return [{"item_name": f"item-{tid}"}]

    txns = [
        {"id": "s1", "transaction_type": "SALE"},
        {"id": "r1", "transaction_type": "RETURN"},
        {"id": "s2", "transaction_type": "SALE"},
        {"id": "x1", "transaction_type": "SETTLEMENT"},
    ]
    out = enrich_with_items(txns, fetch, max_workers=3)

    assert sorted(seen) == ["s1", "s2"]
    assert [t["id"] for t in out] == ["s1", "r1", "s2", "x1"]
    assert out[0]["items"] == [{"item_name": "item-s1"}]
    assert out[1]["items"] == []
    assert out[3]["items"] == []
    assert "items" not in txns[0]


def test_return_sharing_a_sale_id_gets_no_items():
    out = enrich_with_items(
        [{"id": "7", "transaction_type": "SALE"}, {"id": "7", "transaction_type": "RETURN"}],
        lambda tid: [{"sku": "A"}],
    )
    assert out[0]["items"] == [{"sku": "A"}]
    assert out[1]["items"] == []


def test_fetch_failure_yields_empty_items_and_reports():
    errors = []

    def fetch(tid):
        if tid == "bad":
            raise RuntimeError("db down")
        return [{"sku": tid}]

    out = enrich_with_items(
        [{"id": "bad", "transaction_type": "SALE"}, {"id": "ok", "transaction_type": "SALE"}],
        fetch,
        on_error=lambda tid, ex: errors.append((tid, str(ex))),
    )
    assert out[0]["items"] == []
    assert out[1]["items"] == [{"sku": "ok"}]
    assert errors == [("bad", "db down")]


def test_no_sales_means_no_fetches():
    def fetch(_tid):
        raise AssertionError("should not be called")

    assert enrich_with_items([], fetch) == []
    assert enrich_with_items([{"id": "r", "transaction_type": "RETURN"}], fetch) == [
        {"id": "r", "transaction_type": "RETURN", "items": []}
    ]
