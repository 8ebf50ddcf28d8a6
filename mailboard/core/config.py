"""
Configuration Management

Centralized configuration using Pydantic Settings.
All settings loaded from environment variables (or .env) with sensible defaults.
"""
from typing import List, Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================================
    # Accounts & Credentials
    # ============================================================
    accounts_config: str = Field("accounts.yaml", description="Accounts file name (resolved via CONFIG_DIR) or path")
    credentials_use_keyring: bool = Field(True, description="Look up credentials in the OS keyring before the environment")
    keyring_service: str = Field("mailboard", description="Keyring service name for stored credentials")

    # ============================================================
    # Connector Behaviour
    # ============================================================
    imap_timeout: float = Field(30.0, description="IMAP socket timeout in seconds")
    connect_max_retries: int = Field(2, description="Retries for transient network errors during connect")
    connect_retry_base_delay: float = Field(1.0, description="Base delay (s) for exponential connect backoff")
    gmail_requests_per_second: float = Field(10.0, description="Request pacing for Gmail API calls")
    imap_requests_per_second: float = Field(5.0, description="Request pacing for IMAP commands")

    # ============================================================
    # Deletion
    # ============================================================
    trash_fallback_delay: float = Field(0.1, description="Delay (s) between single-message calls after a bulk trash failure")
    bulk_trash_min_size: int = Field(2, description="Smallest batch that uses the provider's bulk mutation")
    bulk_trash_max_size: int = Field(1000, description="Largest chunk sent in one bulk mutation")
    audit_log_path: Optional[str] = Field(None, description="Append audit entries as JSON lines to this file")
    batch_history_size: int = Field(1000, description="Finished deletion batches kept in memory for lookup by id")

    # ============================================================
    # Aggregation Defaults
    # ============================================================
    search_default_limit: int = Field(20, description="Per-account result limit for search")
    recent_default_limit: int = Field(20, description="Per-account limit for recent mail")
    recent_default_days: int = Field(7, description="Window (days) for recent mail")
    stats_recent_days: int = Field(7, description="Window (days) counted as recent in mailbox stats")
    insights_sample_size: int = Field(100, description="Recent messages sampled per account for insights")

    # ============================================================
    # API Configuration
    # ============================================================
    api_key: Optional[str] = Field(None, description="If set, require this value in the X-API-Key header")
    api_port: int = Field(8000, description="API server port")
    allowed_origins: str = Field(
        "http://localhost:3000,http://localhost:8000",
        description="Comma-separated CORS origins"
    )

    # ============================================================
    # Logging
    # ============================================================
    log_level: str = Field("INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")
    log_format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins into list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
