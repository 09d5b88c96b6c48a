import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        api_base_url: str,
        api_token: Optional[str],
        api_timeout_secs: float,
        sync_page_size: int,
        sync_page_delay_secs: float,
        sync_interval_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.api_base_url = api_base_url
        self.api_token = api_token
        self.api_timeout_secs = api_timeout_secs
        self.sync_page_size = sync_page_size
        self.sync_page_delay_secs = sync_page_delay_secs
        self.sync_interval_minutes = sync_interval_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Australia/Melbourne")
    api_base_url = os.getenv("LEDGER_API_BASE_URL", "https://api.up.com.au/api/v1")
    api_token = os.getenv("LEDGER_API_TOKEN") or None
    api_timeout_secs = float(os.getenv("LEDGER_API_TIMEOUT_SECS", "15"))
    sync_page_size = int(os.getenv("LEDGER_SYNC_PAGE_SIZE", "100"))
    sync_page_delay_secs = float(os.getenv("LEDGER_SYNC_PAGE_DELAY_SECS", "1.0"))
    sync_interval_minutes = int(os.getenv("LEDGER_SYNC_INTERVAL_MINUTES", "30"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        api_base_url=api_base_url.rstrip("/"),
        api_token=api_token,
        api_timeout_secs=api_timeout_secs,
        sync_page_size=sync_page_size,
        sync_page_delay_secs=sync_page_delay_secs,
        sync_interval_minutes=sync_interval_minutes,
    )
