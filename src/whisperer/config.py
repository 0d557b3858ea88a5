"""Configuration management for Property Whisperer."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WHISPERER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "whisperer"
    postgres_password: str = "localdev"
    postgres_db: str = "whisperer"
    database_url_override: Optional[str] = None

    # Uploads
    upload_dir: str = "./uploads"
    max_upload_bytes: int = 25 * 1024 * 1024

    # Jobs
    job_timeout_seconds: float = 300.0
    max_auto_retries: int = 1
    housekeeping_interval_seconds: float = 15.0

    # Extraction worker
    worker_backend: str = "sample"  # "sample" or "http"
    worker_url: str = "http://localhost:8100"
    worker_poll_interval_seconds: float = 2.0

    # Reconciliation policy
    dscr_minimum: float = 1.25
    t12_required_months: int = 12
    reconciliation_tolerance_pct: float = 1.0
    tenant_concentration_limit: float = 0.40

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        """Construct async database URL."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def upload_path(self) -> Path:
        """Upload directory as a Path object."""
        return Path(self.upload_dir)


settings = Settings()
