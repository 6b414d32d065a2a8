"""
Configuration management using Pydantic Settings
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Core
    mongodb_uri: str = "mongodb://localhost:27017"  # Override via MONGODB_URI env var in production
    mongodb_db_name: str = "smart_waste"
    environment: str = "development"  # development | production
    use_transactions: bool = False  # Requires a replica set / Atlas cluster

    # CORS Configuration
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000"  # Comma-separated list, override via CORS_ORIGINS env var

    # Notifications (fire-and-forget webhook, e.g. the socket broadcaster)
    notification_webhook_url: Optional[str] = None
    notification_timeout_seconds: float = 5.0

    # Bins
    nearby_default_radius_km: float = 5.0
    nearby_max_results: int = 20
    fill_update_max_retries: int = 5

    # Routes
    default_minutes_per_bin: int = 10

    # Alerts
    overdue_collections_alert_threshold: int = 10
    overflowing_bins_alert_threshold: int = 20

    # Application
    debug: bool = False
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list"""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
