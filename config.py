import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        projection_horizon_years: int,
        max_window_days: int,
        store_retry_attempts: int,
        store_retry_backoff_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.projection_horizon_years = projection_horizon_years
        self.max_window_days = max_window_days
        self.store_retry_attempts = store_retry_attempts
        self.store_retry_backoff_secs = store_retry_backoff_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("PLOTTER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "plotter.db"
    database_url = os.getenv("PLOTTER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("PLOTTER_TIMEZONE", "Europe/Warsaw")
    token_secret = os.getenv(
        "PLOTTER_TOKEN_SECRET",
        "3f0c6a1de27b4f5a9c8e1b2d7a6f4e3c9b8a7d6e5f4c3b2a1908f7e6d5c4b3a2",
    )
    projection_horizon_years = int(
        os.getenv("PLOTTER_PROJECTION_HORIZON_YEARS", "10")
    )
    max_window_days = int(os.getenv("PLOTTER_MAX_WINDOW_DAYS", "3650"))
    store_retry_attempts = max(1, int(os.getenv("PLOTTER_STORE_RETRY_ATTEMPTS", "3")))
    store_retry_backoff_secs = float(
        os.getenv("PLOTTER_STORE_RETRY_BACKOFF_SECS", "0.05")
    )
    log_level = os.getenv("PLOTTER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        projection_horizon_years=projection_horizon_years,
        max_window_days=max_window_days,
        store_retry_attempts=store_retry_attempts,
        store_retry_backoff_secs=store_retry_backoff_secs,
        log_level=log_level,
    )
