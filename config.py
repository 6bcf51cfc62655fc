import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        timezone: str,
        api_host: str,
        api_port: int,
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.timezone = timezone
        self.api_host = api_host
        self.api_port = api_port


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETCAL_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget_calendar.db"
    database_url = os.getenv("BUDGETCAL_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGETCAL_TIMEZONE", "Europe/Berlin")
    api_host = os.getenv("BUDGETCAL_API_HOST", "127.0.0.1")
    api_port = int(os.getenv("BUDGETCAL_API_PORT", "8000"))
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        timezone=timezone,
        api_host=api_host,
        api_port=api_port,
    )
