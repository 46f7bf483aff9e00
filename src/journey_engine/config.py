"""Configuration settings for the Journey Engine."""

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


# __file__ = <root>/src/journey_engine/config.py
PACKAGE_DIR = Path(__file__).parent
PROJECT_ROOT = PACKAGE_DIR.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="JOURNEY_",
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Rate limiting on write endpoints (slowapi syntax)
    rate_limit_enabled: bool = True
    rate_limit_write: str = "30/minute"

    # Storage and catalog
    db_path: Path | None = None
    catalog_path: Path | None = None

    # Template selection
    default_persona: str = "rookie-cut"
    min_stages: int = 3
    max_stages: int = 5

    # Stage state thresholds
    in_progress_rule_ratio: float = 0.4
    in_progress_xp_ratio: float = 0.5

    # Thread pool used for task evaluation
    evaluation_workers: int = 4

    def model_post_init(self, __context) -> None:
        """Set default paths after initialization."""
        if self.db_path is None:
            self.db_path = PROJECT_ROOT / "journey.db"
        if self.catalog_path is None:
            self.catalog_path = PACKAGE_DIR / "catalog" / "stage_templates.json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
