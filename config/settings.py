# config/settings.py

from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, validator
import os
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Beach Cleanup Portal"
    DEBUG: bool = False
    ENVIRONMENT: str = Field(default="development", pattern="^(development|staging|production)$")

    # File uploads
    UPLOAD_DIR: Optional[str] = None
    UPLOAD_URL_PREFIX: str = "/uploads"
    MAX_FILE_SIZE: int = Field(default=10 * 1024 * 1024, ge=1024)
    ALLOWED_FILE_TYPES: str = "jpg,jpeg,png,gif,webp,heic"

    # CORS
    CORS_ORIGINS: str = ""

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        if not self.CORS_ORIGINS:
            return ["*"] if self.DEBUG else []
        return [s.strip() for s in self.CORS_ORIGINS.split(",") if s.strip()]

    @property
    def allowed_file_types_list(self) -> List[str]:
        """Parse allowed file types from comma-separated string"""
        return [ext.strip().lower() for ext in self.ALLOWED_FILE_TYPES.split(",")]

    # Database
    DATABASE_URL: str = "sqlite:///./beach_cleanup.db"
    DB_POOL_SIZE: int = Field(default=20, ge=5, le=100)
    DB_MAX_OVERFLOW: int = Field(default=30, ge=5, le=100)
    DB_POOL_RECYCLE: int = Field(default=3600, ge=300)

    # Live feed
    FEED_RADIUS_KM: float = Field(default=5.0, ge=0)
    NOTIFICATION_PREVIEW_CHARS: int = Field(default=50, ge=10, le=500)

    # Monitoring
    LOG_LEVEL: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # Server
    PORT: Optional[int] = Field(default=8000, ge=1, le=65535)

    @validator('DATABASE_URL')
    def validate_database_url(cls, v):
        """Validate database URL format"""
        if not v.startswith(('postgresql://', 'postgresql+psycopg2://', 'sqlite://')):
            raise ValueError('Unsupported database URL format')
        return v

    @validator('CORS_ORIGINS')
    def validate_cors_origins(cls, v):
        """Validate CORS origins in production"""
        environment = os.getenv('ENVIRONMENT', 'development')
        if environment == 'production' and ('*' in v or not v):
            raise ValueError('Wildcard CORS origins not allowed in production')
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.ENVIRONMENT == "development"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
