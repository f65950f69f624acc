from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

ALLOWED_ENVIRONMENTS = {"development", "test", "production"}


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., ENVIRONMENT, LOG_LEVEL,
    DATA_DIR, DB_FILENAME, FRONTEND_URL, DEFAULT_PAGE_LIMIT).
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Basic app metadata
    app_name: str = "Splitbook API"
    version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Serving
    host: str = "0.0.0.0"
    port: int = 3001
    frontend_url: str = "https://splitbook.app"  # only CORS origin in production

    # Auth; bearer signatures are verified whenever a secret is set
    jwt_secret: Optional[str] = None
    jwt_algorithms: List[str] = ["HS256"]

    # Data & persistence
    data_dir: Path = Path("data")
    db_filename: str = "splitbook.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided

    # Pagination
    default_page_limit: int = 20
    max_page_limit: int = 100

    # Settlements / drafts
    settlement_min_amount_cents: int = 1
    draft_low_confidence_threshold: float = 0.7
    large_amount_warning_cents: int = 1_000_000

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        self.environment = self.environment.strip().lower()
        if self.environment not in ALLOWED_ENVIRONMENTS:
            raise ValueError(
                f"Unsupported environment '{self.environment}'. Allowed: {sorted(ALLOWED_ENVIRONMENTS)}"
            )
        if self.is_production and not self.jwt_secret:
            raise ValueError("jwt_secret must be set in production")
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        # Ensure persistence directory exists
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        if not 1 <= self.default_page_limit <= self.max_page_limit:
            raise ValueError("default_page_limit must be between 1 and max_page_limit")


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
