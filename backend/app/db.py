import threading
from contextlib import contextmanager
from typing import Optional

from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import settings

_pool: Optional[ConnectionPool] = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    # Opened on first use so importing routers (tests, tooling) never dials the database.
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                # Note: we keep row_factory=dict_row; handlers and the ledger engine expect dict rows.
                _pool = ConnectionPool(
                    conninfo=settings.db_url,
                    min_size=settings.db_pool_min_size,
                    max_size=max(settings.db_pool_min_size, settings.db_pool_max_size),
                    kwargs={"row_factory": dict_row},
                    open=True,
                )
    return _pool


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:`
    # - commit on success
    # - rollback on exception
    # - return connection to pool
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_get_pool())


def close_pool() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    global _pool
    pool, _pool = _pool, None
    if pool is None:
        return
    try:
        pool.close()
    except Exception:
        pass


def set_company_context(conn, company_id: str):
    with conn.cursor() as cur:
        # `SET ... = %s` is not valid when using the extended query protocol (psycopg sends $1).
        # set_config(name text, value text, is_local boolean)
        cur.execute(
            "SELECT set_config('app.current_company_id', %s::text, true)",
            (company_id,),
        )
