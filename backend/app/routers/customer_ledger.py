from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import TypeAdapter, ValidationError
from datetime import date
from decimal import Decimal
from typing import Optional
import csv
import io
from ..config import settings
from ..db import get_conn, set_company_context
from ..logging_utils import json_log
from ..deps import get_company_id, require_permission, get_current_user
from ..validation import ExportFormat, LedgerPaymentMethod, LedgerPaymentStatus, LedgerTransactionType
from ..ledger.diagnostics import LedgerDiagnostics
from ..ledger.display import decorate_for_display
from ..ledger.fields import transaction_id_of
from ..ledger.grouping import CustomerLedgerGroup, aggregate_customer_ledgers, build_customer_ledger_group
from ..ledger.identity import CustomerIdentity, resolve_customer_identity
from ..ledger.normalizer import ledger_sort_key, normalize_transactions

router = APIRouter(prefix="/customer-ledger", tags=["customer-ledger"])

_PAYMENT_STATUS = TypeAdapter(LedgerPaymentStatus)
_PAYMENT_METHOD = TypeAdapter(LedgerPaymentMethod)
_EXPORT_FORMAT = TypeAdapter(ExportFormat)
_TRANSACTION_TYPE = TypeAdapter(LedgerTransactionType)

OUTSTANDING_EPSILON = Decimal("0.01")

CSV_COLUMNS = [
    "transaction_date",
    "invoice_no",
    "transaction_type",
    "transaction_type_display",
    "customer_name",
    "customer_phone",
    "payment_method",
    "payment_status_display",
    "old_balance",
    "amount",
    "total_amount",
    "corrected_paid",
    "running_balance",
]

# Sales and returns as one stream of raw ledger records. Returns inherit the
# customer/scope of the sale they reverse and are declared as REFUND rows.
_LEDGER_RECORDS_SQL = """
    SELECT s.id::text AS transaction_id,
           s.invoice_no,
           'SALE' AS transaction_type,
           s.scope_type,
           s.scope_id,
           s.created_at AS transaction_date,
           s.created_at,
           s.payment_method,
           s.payment_type,
           s.payment_status,
           s.payment_amount,
           CASE
             WHEN s.payment_status IN ('COMPLETED', 'PARTIAL', 'PENDING') THEN s.payment_amount
             ELSE 0
           END AS paid_amount,
           s.credit_amount,
           NULL::numeric AS amount,
           s.subtotal,
           s.total,
           s.running_balance,
           s.customer_name,
           s.customer_phone,
           s.customer_info,
           s.notes,
           s.status,
           u.username AS cashier_name
    FROM sales s
    LEFT JOIN users u ON u.id = s.user_id
    WHERE s.company_id = %s
    UNION ALL
    SELECT r.id::text AS transaction_id,
           r.return_no AS invoice_no,
           'RETURN' AS transaction_type,
           s.scope_type,
           s.scope_id,
           r.created_at AS transaction_date,
           r.created_at,
           'REFUND' AS payment_method,
           NULL AS payment_type,
           NULL AS payment_status,
           0 AS payment_amount,
           0 AS paid_amount,
           NULL::numeric AS credit_amount,
           -r.total_refund AS amount,
           NULL::numeric AS subtotal,
           NULL::numeric AS total,
           NULL::numeric AS running_balance,
           s.customer_name,
           s.customer_phone,
           s.customer_info,
           r.reason AS notes,
           r.status,
           u.username AS cashier_name
    FROM sales_returns r
    JOIN sales s ON s.id = r.original_sale_id AND s.company_id = r.company_id
    LEFT JOIN users u ON u.id = r.user_id
    WHERE r.company_id = %s
"""

# Settlements are sales rows whose payment_type marks them as outstanding-balance payments.
_TRANSACTION_TYPE_FILTERS = {
    "SALE": " AND t.transaction_type = 'SALE' AND t.payment_type IS DISTINCT FROM 'OUTSTANDING_SETTLEMENT'",
    "RETURN": " AND t.transaction_type = 'RETURN'",
    "SETTLEMENT": " AND t.payment_type = 'OUTSTANDING_SETTLEMENT'",
}


def _parse_code(adapter: TypeAdapter, value: Optional[str], name: str) -> Optional[str]:
    raw = (value or "").strip()
    if not raw or raw.lower() == "all":
        return None
    try:
        return adapter.validate_python(raw)
    except ValidationError:
        raise HTTPException(status_code=400, detail=f"invalid {name}")


def _check_page(limit: int, offset: int, max_limit: int):
    if limit <= 0 or limit > max_limit:
        raise HTTPException(status_code=400, detail=f"limit must be between 1 and {max_limit}")
    if offset < 0:
        raise HTTPException(status_code=400, detail="offset must be >= 0")


def _check_range(start_date: Optional[date], end_date: Optional[date]):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date cannot be before start_date")


def _resolve_ledger_scope(cur, user: dict) -> Optional[tuple[str, str]]:
    """
    Role-based restriction on which sales a user may see.

    sales.scope_id stores the branch/warehouse *name*, so ids are translated.
    Admins (and any other role) are unrestricted.
    """
    role = (user.get("role") or "").upper()
    if role == "CASHIER" and user.get("branch_id"):
        cur.execute("SELECT name FROM branches WHERE id = %s", (user["branch_id"],))
        row = cur.fetchone()
        if not row:
            raise HTTPException(status_code=403, detail="branch scope not found")
        return ("BRANCH", row["name"])
    if role == "WAREHOUSE_KEEPER" and user.get("warehouse_id"):
        cur.execute("SELECT name FROM warehouses WHERE id = %s", (user["warehouse_id"],))
        row = cur.fetchone()
        if not row:
            raise HTTPException(status_code=403, detail="warehouse scope not found")
        return ("WAREHOUSE", row["name"])
    return None


def _fetch_ledger_records(
    cur,
    company_id: str,
    *,
    scope: Optional[tuple[str, str]] = None,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    payment_status: Optional[str] = None,
    transaction_type: Optional[str] = None,
    payment_method: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[dict], int]:
    where = ""
    params: list = [company_id, company_id]
    if scope:
        where += " AND t.scope_type = %s AND t.scope_id = %s"
        params.extend(scope)
    if customer_name or customer_phone:
        name_needle = customer_name or customer_phone
        phone_needle = customer_phone or customer_name
        where += """
          AND (
            t.customer_name = %s
            OR t.customer_info->>'name' = %s
            OR t.customer_phone = %s
            OR t.customer_info->>'phone' = %s
          )
        """
        params.extend([name_needle, name_needle, phone_needle, phone_needle])
    if search and search.strip():
        needle = f"%{search.strip()}%"
        where += """
          AND (
            COALESCE(t.customer_name, '') ILIKE %s
            OR COALESCE(t.customer_phone, '') ILIKE %s
            OR COALESCE(t.customer_info->>'name', '') ILIKE %s
            OR COALESCE(t.customer_info->>'phone', '') ILIKE %s
          )
        """
        params.extend([needle, needle, needle, needle])
    if start_date:
        where += " AND t.created_at::date >= %s"
        params.append(start_date)
    if end_date:
        where += " AND t.created_at::date <= %s"
        params.append(end_date)
    if payment_status:
        where += " AND t.payment_status = %s"
        params.append(payment_status)
    if payment_method:
        where += " AND t.payment_method = %s"
        params.append(payment_method)
    if transaction_type:
        where += _TRANSACTION_TYPE_FILTERS[transaction_type]

    base_sql = f"FROM ({_LEDGER_RECORDS_SQL}) t WHERE 1=1 {where}"
    cur.execute(f"SELECT COUNT(*)::int AS total {base_sql}", params)
    total = int((cur.fetchone() or {}).get("total") or 0)
    cur.execute(
        f"SELECT t.* {base_sql} ORDER BY t.created_at DESC, t.transaction_id DESC LIMIT %s OFFSET %s",
        params + [limit, offset],
    )
    return cur.fetchall() or [], total


def _fetch_sale_items(company_id: str, sale_id: str) -> list[dict]:
    # Runs on enrichment worker threads: one pooled connection per call.
    with get_conn() as conn:
        set_company_context(conn, company_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT si.id, si.sale_id, si.inventory_item_id, si.quantity, si.unit_price, si.discount, si.total,
                       ii.name AS item_name, ii.sku, ii.selling_price AS catalog_price, ii.category
                FROM sale_items si
                JOIN sales s ON s.id = si.sale_id AND s.company_id = %s
                LEFT JOIN inventory_items ii ON ii.id = si.inventory_item_id
                WHERE si.sale_id = %s
                ORDER BY si.id
                """,
                (company_id, sale_id),
            )
            return cur.fetchall() or []


def _customer_summary(cur, company_id: str, customer_id: str, identity: CustomerIdentity, total: int) -> dict:
    cur.execute(
        """
        SELECT id, name, phone, email, status, created_at
        FROM customers
        WHERE company_id = %s AND (name = %s OR phone = %s)
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (company_id, customer_id, customer_id),
    )
    row = cur.fetchone()
    if row:
        return {**row, "total_transactions": total}
    return {"name": identity.name, "phone": identity.phone, "total_transactions": total}


def _log_diagnostics(diagnostics: LedgerDiagnostics, **fields):
    if diagnostics:
        json_log("warning", "customer_ledger.degraded_input", issues=diagnostics.counts(), **fields)


def _group_payload(group: CustomerLedgerGroup) -> dict:
    out = group.to_dict()
    out["transactions"] = [decorate_for_display(t) for t in group.transactions]
    return out


def _item_key(txn: dict) -> tuple:
    return (txn.get("transaction_type"), transaction_id_of(txn))


def _attach_group_items(transactions: list[dict], groups: list[CustomerLedgerGroup]) -> list[dict]:
    items = {_item_key(t): t.get("items") or [] for g in groups for t in g.transactions}
    return [{**t, "items": items.get(_item_key(t), [])} for t in transactions]


def _build_ledger_payload(
    cur,
    *,
    company_id: str,
    customer_id: str,
    user: dict,
    start_date: Optional[date],
    end_date: Optional[date],
    payment_status: Optional[str],
    payment_method: Optional[str],
    limit: int,
    offset: int,
    detailed: bool,
    transaction_type: Optional[str] = None,
) -> dict:
    customer_id = (customer_id or "").strip()
    if not customer_id:
        raise HTTPException(status_code=400, detail="customer_id is required")
    all_customers = customer_id == settings.ledger_all_customers_sentinel

    scope = _resolve_ledger_scope(cur, user)
    rows, total = _fetch_ledger_records(
        cur,
        company_id,
        scope=scope,
        customer_name=None if all_customers else customer_id,
        customer_phone=None if all_customers else customer_id,
        start_date=start_date,
        end_date=end_date,
        payment_status=payment_status,
        payment_method=payment_method,
        transaction_type=transaction_type,
        limit=limit,
        offset=offset,
    )

    def _on_items_error(tid: str, ex: Exception):
        json_log("error", "customer_ledger.items_fetch_failed", company_id=company_id, transaction_id=tid, error=str(ex))

    fetch_items = (lambda tid: _fetch_sale_items(company_id, tid)) if detailed else None
    report = aggregate_customer_ledgers(
        rows,
        fetch_items=fetch_items,
        max_workers=settings.ledger_workers,
        items_workers=settings.ledger_workers,
        on_items_error=_on_items_error,
    )
    _log_diagnostics(report.diagnostics, company_id=company_id, customer_id=customer_id)

    if all_customers:
        transactions = sorted(
            (t for g in report.groups for t in g.transactions),
            key=ledger_sort_key,
            reverse=True,
        )
        summary = report.summary
        customer = {
            "name": "All Customers",
            "phone": None,
            "total_transactions": total,
            "customer_count": len(report.groups),
        }
    else:
        if len(report.groups) == 1:
            ledger = report.groups[0]
        else:
            # A name/phone lookup can match several identities; the requested
            # customer's ledger is then one running balance over all of them.
            identity = resolve_customer_identity(rows[0]) if rows else CustomerIdentity(name=customer_id)
            ledger = build_customer_ledger_group(identity, rows)
            if detailed:
                # Items were already fetched per group; never fetch a sale twice.
                ledger.transactions = _attach_group_items(ledger.transactions, report.groups)
        transactions = ledger.transactions
        summary = ledger.summary
        customer = _customer_summary(cur, company_id, customer_id, ledger.identity, total)

    return {
        "customer": customer,
        "transactions": [decorate_for_display(t) for t in transactions],
        "groupedLedgers": [_group_payload(g) for g in report.groups],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": (offset + len(rows)) < total,
        },
        "summary": summary.to_dict(),
        "diagnostics": report.diagnostics.counts(),
    }


def _customer_row(group: CustomerLedgerGroup) -> dict:
    s = group.summary
    newest = group.transactions[0] if group.transactions else {}
    oldest = group.transactions[-1] if group.transactions else {}
    return {
        "customer_name": group.identity.name,
        "customer_phone": group.identity.phone,
        "total_transactions": s.total_transactions,
        "total_amount": s.total_amount,
        "total_paid": s.total_paid,
        "total_credit": s.total_credit,
        "current_balance": s.outstanding_balance,
        "has_outstanding_balance": s.outstanding_balance > 0,
        "first_transaction_date": oldest.get("transaction_date"),
        "last_transaction_date": newest.get("transaction_date"),
    }


@router.get("/customers", dependencies=[Depends(require_permission("customers:read"))])
def list_ledger_customers(
    search: Optional[str] = None,
    has_balance: bool = False,
    limit: int = 50,
    offset: int = 0,
    company_id: str = Depends(get_company_id),
    user=Depends(get_current_user),
):
    """
    Every customer that has ledger activity, with balances computed by the
    reconciliation engine (latest running balance per customer).
    """
    _check_page(limit, offset, 500)
    with get_conn() as conn:
        set_company_context(conn, company_id)
        with conn.cursor() as cur:
            scope = _resolve_ledger_scope(cur, user)
            rows, _ = _fetch_ledger_records(
                cur,
                company_id,
                scope=scope,
                search=search,
                limit=settings.ledger_scan_limit,
            )
    report = aggregate_customer_ledgers(rows, max_workers=settings.ledger_workers)
    _log_diagnostics(report.diagnostics, company_id=company_id, customer_id=settings.ledger_all_customers_sentinel)

    customers = [_customer_row(g) for g in report.groups]
    if has_balance:
        customers = [c for c in customers if c["has_outstanding_balance"]]
    total = len(customers)
    page = customers[offset : offset + limit]
    return {
        "customers": page,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": (offset + len(page)) < total,
        },
        "summary": report.summary.to_dict(),
    }


@router.get("/outstanding", dependencies=[Depends(require_permission("customers:read"))])
def outstanding_balance(
    customer_name: Optional[str] = None,
    phone: Optional[str] = None,
    company_id: str = Depends(get_company_id),
    user=Depends(get_current_user),
):
    """
    Latest running balance for one customer (POS "clear outstanding" screen).
    Negative balances are store credit owed to the customer.
    """
    name = (customer_name or "").strip()
    phone = (phone or "").strip()
    if not name and not phone:
        raise HTTPException(status_code=400, detail="customer_name or phone is required")

    with get_conn() as conn:
        set_company_context(conn, company_id)
        with conn.cursor() as cur:
            scope = _resolve_ledger_scope(cur, user)
            rows, _ = _fetch_ledger_records(
                cur,
                company_id,
                scope=scope,
                customer_name=name or None,
                customer_phone=phone or None,
                limit=settings.ledger_scan_limit,
            )

    diagnostics = LedgerDiagnostics()
    ledger = normalize_transactions(rows, diagnostics)
    _log_diagnostics(diagnostics, company_id=company_id, customer_id=name or phone)
    if not ledger:
        return {"outstanding": []}
    latest = ledger[-1]
    balance = latest["balance"]
    if abs(balance) <= OUTSTANDING_EPSILON:
        return {"outstanding": []}

    identity = resolve_customer_identity(latest)
    return {
        "outstanding": [
            {
                "customerName": identity.name,
                "phone": identity.phone,
                "totalOutstanding": abs(balance),
                "creditAmount": balance,
                "isCredit": balance < 0,
                "latestInvoice": latest.get("invoice_no"),
                "lastTransactionDate": latest.get("transaction_date"),
            }
        ]
    }


@router.get("/{customer_id}", dependencies=[Depends(require_permission("customers:read"))])
def get_customer_ledger(
    customer_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    payment_status: Optional[str] = None,
    payment_method: Optional[str] = None,
    transaction_type: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    detailed: bool = False,
    company_id: str = Depends(get_company_id),
    user=Depends(get_current_user),
):
    """
    Customer ledger: chronological running balances, payment state and totals.
    `customer_id` is a name or phone; the configured sentinel ("all") returns one
    grouped ledger per customer with an aggregated summary.

    Balances are folded over the returned page only, starting from 0. Rows the
    page leaves out (older than limit/offset reaches, or before start_date) are
    not carried in as an opening balance; ask for a limit that covers the whole
    history, without start_date, for true running balances.
    """
    _check_page(limit, offset, settings.ledger_max_limit)
    _check_range(start_date, end_date)
    status_code = _parse_code(_PAYMENT_STATUS, payment_status, "payment_status")
    method_code = _parse_code(_PAYMENT_METHOD, payment_method, "payment_method")
    type_code = _parse_code(_TRANSACTION_TYPE, transaction_type, "transaction_type")
    with get_conn() as conn:
        set_company_context(conn, company_id)
        with conn.cursor() as cur:
            return _build_ledger_payload(
                cur,
                company_id=company_id,
                customer_id=customer_id,
                user=user,
                start_date=start_date,
                end_date=end_date,
                payment_status=status_code,
                payment_method=method_code,
                limit=limit,
                offset=offset,
                detailed=detailed,
                transaction_type=type_code,
            )


@router.get("/{customer_id}/export", dependencies=[Depends(require_permission("customers:read"))])
def export_customer_ledger(
    customer_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    format: Optional[str] = None,
    detailed: bool = False,
    company_id: str = Depends(get_company_id),
    user=Depends(get_current_user),
):
    _check_range(start_date, end_date)
    fmt = _parse_code(_EXPORT_FORMAT, format or "json", "format")
    with get_conn() as conn:
        set_company_context(conn, company_id)
        with conn.cursor() as cur:
            payload = _build_ledger_payload(
                cur,
                company_id=company_id,
                customer_id=customer_id,
                user=user,
                start_date=start_date,
                end_date=end_date,
                payment_status=None,
                payment_method=None,
                limit=settings.ledger_max_limit,
                offset=0,
                detailed=detailed,
            )
    if fmt != "csv":
        return payload

    output = io.StringIO()
    writer = csv.writer(output)
    header = CSV_COLUMNS + (["items_count"] if detailed else [])
    writer.writerow(header)
    for t in payload["transactions"]:
        row = [t.get(c) for c in CSV_COLUMNS]
        if detailed:
            row.append(len(t.get("items") or []))
        writer.writerow(row)
    filename = f"customer-ledger-{customer_id.strip()}-{date.today().isoformat()}.csv"
    return Response(
        content=output.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )
