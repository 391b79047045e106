import os
import secrets
import logging
from typing import List, Union, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator

logger = logging.getLogger(__name__)


def generate_secret_key() -> str:
    """Read SECRET_KEY from the environment, or generate a throwaway one."""
    env_key = os.environ.get("SECRET_KEY")
    if env_key and len(env_key) >= 32:
        return env_key
    new_key = secrets.token_hex(32)
    logger.warning("SECRET_KEY not set in environment, using a generated key")
    logger.warning("For production, set SECRET_KEY in the .env file")
    return new_key


class Settings(BaseSettings):
    PROJECT_NAME: str = "Outreach Campaigns"
    API_V1_STR: str = "/api/v1"

    SECRET_KEY: str = Field(default_factory=generate_secret_key)
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 days

    # Dashboard admin
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = Field(default="")

    SECURITY_ENABLED: bool = Field(default=True)

    # Database
    DATABASE_URL: str = "sqlite:///./outreach.db"

    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:3000"]

    # Redis / Celery
    REDIS_URL: str = "redis://localhost:6379/0"

    # Email provider (Resend)
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com"
    RESEND_WEBHOOK_SECRET: str = ""
    EMAIL_PROVIDER_TIMEOUT: int = 30

    # LLM (OpenAI-compatible endpoint)
    LLM_PROVIDER: str = "anthropic"
    LLM_API_KEY: str = ""
    LLM_BASE_URL: Optional[str] = None
    LLM_MODEL: str = "claude-sonnet-4-20250514"
    LLM_TEMPERATURE: float = 0.8
    LLM_MAX_TOKENS: int = 1000

    # Sending
    SEND_TIMEZONE: str = "America/New_York"
    GENERATION_BATCH_SIZE: int = 10
    SEND_LOCK_TIMEOUT: int = 120

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = False
    LOG_DIR: str = "logs"

    @field_validator("ADMIN_PASSWORD", mode="before")
    @classmethod
    def validate_admin_password(cls, v: str) -> str:
        if not v or v in ["", "admin123", "password", "123456"]:
            new_password = secrets.token_urlsafe(16)
            logger.warning("ADMIN_PASSWORD not set or too weak, generated a random one")
            logger.warning(f"Generated admin password: {new_password}")
            return new_password
        if len(v) < 12:
            logger.warning("ADMIN_PASSWORD should be at least 12 characters")
        return v

    @field_validator("SEND_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except ZoneInfoNotFoundError:
            raise ValueError(f"Unknown time zone: {v}")
        return v

    @property
    def cors_origins(self) -> List[str]:
        if isinstance(self.BACKEND_CORS_ORIGINS, str):
            return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]
        return [str(origin) for origin in self.BACKEND_CORS_ORIGINS]

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")


settings = Settings()
