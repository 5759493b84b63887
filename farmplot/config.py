# farmplot/config.py
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve to the project root (one level up from farmplot/)
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FARMPLOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = "Farm & Plot API"

    database_url: str = f"sqlite:///{(BASE_DIR / 'farmplot.db').as_posix()}"
    sql_echo: bool = False

    log_level: str = "INFO"

    # paging
    default_page_size: int = 20
    max_page_size: int = 100

    # tenant resolution is a placeholder: the caller sends its tenant id
    tenant_header: str = "X-Tenant-ID"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
