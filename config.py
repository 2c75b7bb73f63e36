import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        daily_window_days: int,
        top_n: int,
        top_establishments: int,
        max_mounted_views: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.daily_window_days = daily_window_days
        self.top_n = top_n
        self.top_establishments = top_establishments
        self.max_mounted_views = max_mounted_views
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGERLENS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledgerlens.db"
    database_url = os.getenv("LEDGERLENS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGERLENS_TIMEZONE", "Europe/Berlin")
    daily_window_days = int(os.getenv("LEDGERLENS_DAILY_WINDOW_DAYS", "7"))
    top_n = int(os.getenv("LEDGERLENS_TOP_N", "5"))
    top_establishments = int(os.getenv("LEDGERLENS_TOP_ESTABLISHMENTS", "10"))
    max_mounted_views = int(os.getenv("LEDGERLENS_MAX_MOUNTED_VIEWS", "32"))
    log_level = os.getenv("LEDGERLENS_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        daily_window_days=daily_window_days,
        top_n=top_n,
        top_establishments=top_establishments,
        max_mounted_views=max_mounted_views,
        log_level=log_level,
    )
