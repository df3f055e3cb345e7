import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/payables')
        # Comma-separated list of allowed CORS origins for the web client.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Vendor invoice list pagination.
        self.invoice_page_size = max(1, _env_int("VENDOR_INVOICE_PAGE_SIZE", 100))
        self.invoice_max_page_size = max(self.invoice_page_size, _env_int("VENDOR_INVOICE_MAX_PAGE_SIZE", 1000))

        # Invoice documents (PDF / images) pushed to object storage.
        self.attachment_max_bytes = _env_int("ATTACHMENT_MAX_BYTES", 10 * 1024 * 1024)
        self.attachment_key_prefix = (os.getenv("ATTACHMENT_BUCKET_PREFIX") or "vendor-invoices").strip().strip("/") or "vendor-invoices"

settings = Settings()
