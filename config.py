import os
from functools import lru_cache
from pathlib import Path

DEFAULT_TIMEZONE = "Australia/Sydney"


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        scheduler_enabled: bool,
        auto_convert_hour: int,
        auto_convert_minute: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.scheduler_enabled = scheduler_enabled
        self.auto_convert_hour = auto_convert_hour
        self.auto_convert_minute = auto_convert_minute
        self.log_level = log_level


def _data_dir() -> Path:
    return Path(os.getenv("PAYCYCLE_DATA_DIR", "./data")).resolve()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _data_dir()
    default_db = data_dir / "paycycle.db"
    database_url = os.getenv("PAYCYCLE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("PAYCYCLE_TIMEZONE", DEFAULT_TIMEZONE)
    scheduler_enabled = _env_flag("PAYCYCLE_SCHEDULER_ENABLED", "1")
    auto_convert_hour = int(os.getenv("PAYCYCLE_AUTO_CONVERT_HOUR", "3"))
    auto_convert_minute = int(os.getenv("PAYCYCLE_AUTO_CONVERT_MINUTE", "15"))
    log_level = os.getenv("PAYCYCLE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        scheduler_enabled=scheduler_enabled,
        auto_convert_hour=auto_convert_hour,
        auto_convert_minute=auto_convert_minute,
        log_level=log_level,
    )
