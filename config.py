import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        require_category: bool,
        sqlite_busy_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.require_category = require_category
        self.sqlite_busy_timeout_secs = sqlite_busy_timeout_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "ledger.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    require_category = _env_flag("LEDGER_REQUIRE_CATEGORY", "false")
    busy_timeout = float(os.getenv("LEDGER_SQLITE_BUSY_TIMEOUT_SECS", "5"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        require_category=require_category,
        sqlite_busy_timeout_secs=busy_timeout,
    )
