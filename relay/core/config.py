"""
Application settings.
Loaded from environment variables and .env.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Database. DATABASE_URL wins; otherwise assembled from DB_* parts.
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "relay"
    DB_USER: str = "relay"
    DB_PASS: str = ""

    # Redis (session store shared with the auth service)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    SESSION_TTL: int = 86400  # 24 hours in seconds

    # Realtime
    TYPING_TIMEOUT_SECONDS: float = 3.0
    PRESENCE_OFFLINE_GRACE_SECONDS: float = 5.0
    WS_SEND_TIMEOUT_SECONDS: float = 5.0

    # Messages and pagination
    MESSAGE_MAX_LENGTH: int = 10_000
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 100

    # Optional
    DEBUG: bool = False
    PROJECT_NAME: str = "Relay Chat Backend"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

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
