"""
Configuration management for Feishu File Sync.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


STATE_FILE_NAME = "feishu_files.json"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Feishu Configuration
    feishu_app_id: str = ""
    feishu_app_secret: str = ""
    feishu_base_url: str = "https://open.feishu.cn"
    feishu_verification_token: Optional[str] = None
    feishu_timeout_seconds: float = 30.0
    fetch_timeout_seconds: float = 300.0  # whole download, all chunks

    # API Configuration
    api_port: int = 8000
    log_level: str = "INFO"
    api_title: str = "Feishu File Sync API"
    api_version: str = "1.0.0"

    # Storage Configuration
    data_root: Path = Path("_data")
    file_media_dir: str = "file_media"
    file_data_dir: str = "file_data"
    staging_dir: str = "temp_uploads"

    # Dedup Configuration
    dedup_window_seconds: float = 600.0  # 10 minutes

    # Retention Configuration
    file_expiry_hours: float = 72.0  # 0 disables expiry
    sweep_interval_seconds: float = 3600.0  # 0 disables background sweep
    staging_grace_seconds: float = 3600.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_media_dir(self) -> Path:
        """Directory holding one blob per pending file."""
        return (self.data_root / self.file_media_dir).expanduser()

    def get_state_file(self) -> Path:
        """JSON file holding every file record."""
        return (self.data_root / self.file_data_dir / STATE_FILE_NAME).expanduser()

    def get_staging_dir(self) -> Path:
        """Directory where downloads land before the store claims them."""
        return (self.data_root / self.staging_dir).expanduser()

    def has_feishu_credentials(self) -> bool:
        """Check whether both app id and secret are configured."""
        return bool(self.feishu_app_id and self.feishu_app_secret)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
