from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings

_BACKEND_DIR = Path(__file__).resolve().parents[1]
_ENV_FILES = (
    _BACKEND_DIR / ".env",
    ".env",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_title: str = "Conduit"
    app_version: str = "0.1.0"
    app_env: str = "development"

    # Storage backend — "memory" keeps everything in process, "sqlalchemy" uses database_url
    repository_backend: Literal["memory", "sqlalchemy"] = "memory"
    database_url: str = "sqlite:///./conduit.db"
    database_echo: bool = False

    # bcrypt work factor for new password hashes (4..31)
    password_hash_rounds: int = 12

    # Article listings
    default_page_size: int = 20

    # Logging — per-category log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_level: str = "INFO"                  # Root / app-wide
    log_level_sql: str = "WARNING"           # sqlalchemy.engine — SQL queries
    log_level_repository: str = "INFO"       # in-memory and SQL repositories
    log_level_services: str = "INFO"         # application services

    model_config = {
        "env_file": _ENV_FILES,
        "env_file_encoding": "utf-8",
    }


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance — reads .env once."""
    return Settings()
