"""
Configuration management using Pydantic Settings
"""
from pydantic_settings import BaseSettings
from typing import List
import os


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Remote backend (PostgREST-style data API)
    REMOTE_URL: str
    REMOTE_API_KEY: str
    REMOTE_TIMEOUT_SECONDS: float = 15.0

    # Application
    APP_NAME: str = "Offline Exam Server"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: List[str] = ["*"]

    # Local store
    DATA_DIR: str = "data"
    DATABASE_FILENAME: str = "offline.db"
    DB_BUSY_TIMEOUT_MS: int = 5000

    # Network
    HOST: str = "0.0.0.0"
    BASE_PORT: int = 3000
    MAX_PORT: int = 3005
    OPEN_BROWSER: bool = True

    # Sessions
    SESSION_HEADER: str = "X-Session-Token"

    # Sync
    AUTO_UPLOAD_INTERVAL_SECONDS: int = 0  # 0 disables periodic upload

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 120
    RATE_LIMIT_PER_HOUR: int = 3000

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def database_path(self) -> str:
        return os.path.join(self.DATA_DIR, self.DATABASE_FILENAME)

    @property
    def images_dir(self) -> str:
        return os.path.join(self.DATA_DIR, "images")


# Global settings instance
settings = Settings()
