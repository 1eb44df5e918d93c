"""
Application settings.
Loaded from environment variables and the optional .env file.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # AWS
    AWS_REGION: str = "us-east-1"

    # Database. DATABASE_URL wins over the individual parts when set.
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "case_chat"
    DB_USER: str = "postgres"
    DB_PASS: str = "postgres"

    # Redis (identity sessions + pending notifications)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    SESSION_TTL: int = 86400  # 24 hours in seconds

    # S3 (when set, chat attachments are stored in S3)
    S3_BUCKET_NAME: Optional[str] = None
    S3_REGION: Optional[str] = None  # defaults to AWS_REGION

    # Chat
    CHAT_MESSAGE_MAX_LENGTH: int = 10_000
    CHAT_PAGE_DEFAULT_LIMIT: int = 50
    CHAT_PAGE_MAX_LIMIT: int = 100
    PENDING_NOTIFICATIONS_MAX: int = 100  # per user, oldest dropped first

    # Optional
    DEBUG: bool = False
    PROJECT_NAME: str = "Case Chat Backend"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Local uploads fallback when S3_BUCKET_NAME is not set
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_SIZE: int = 5 * 1024 * 1024

    @property
    def use_s3(self) -> bool:
        return bool(self.S3_BUCKET_NAME)

    @property
    def s3_region(self) -> str:
        return self.S3_REGION or self.AWS_REGION

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASS}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
