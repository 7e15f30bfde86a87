import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        run_scheduler: bool,
        sqlite_busy_timeout_ms: int = 5000,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.run_scheduler = run_scheduler
        self.sqlite_busy_timeout_ms = sqlite_busy_timeout_ms


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("CARDCYCLE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "cardcycle.db"
    database_url = os.getenv("CARDCYCLE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("CARDCYCLE_TIMEZONE", "America/Sao_Paulo")
    run_scheduler = _env_flag("CARDCYCLE_RUN_SCHEDULER", "1")
    busy_timeout = int(os.getenv("CARDCYCLE_SQLITE_BUSY_TIMEOUT_MS", "5000"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        run_scheduler=run_scheduler,
        sqlite_busy_timeout_ms=busy_timeout,
    )
