import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(self, database_url: str, timezone: str) -> None:
        self.database_url = database_url
        self.timezone = timezone


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "ledger.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    return Settings(database_url=database_url, timezone=timezone)
