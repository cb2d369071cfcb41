import os
from typing import List

class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _env_int(self, name: str, default: int, *, minimum: int = 1) -> int:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            return max(minimum, int(raw))
        except ValueError:
            return default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/multipos')
        # Comma-separated list of allowed CORS origins for the admin dashboard.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        self.db_pool_min_size = self._env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max_size = self._env_int("DB_POOL_MAX_SIZE", 10)

        # Customer ledger: hard cap on rows pulled for one ledger/export request.
        self.ledger_max_limit = self._env_int("LEDGER_MAX_LIMIT", 1000)
        # Rows scanned when summarising every customer or looking up a latest balance.
        self.ledger_scan_limit = self._env_int("LEDGER_SCAN_LIMIT", 20000)
        # Threads used to build customer groups and to fetch sale line items.
        self.ledger_workers = self._env_int("LEDGER_WORKERS", 4)
        # Path value of /customer-ledger/{customer_id} that means "every customer".
        self.ledger_all_customers_sentinel = (
            os.getenv("LEDGER_ALL_CUSTOMERS_SENTINEL", "all").strip() or "all"
        )

settings = Settings()
