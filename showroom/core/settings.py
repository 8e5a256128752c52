from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    APP_ENV: str = Field("dev")
    APP_TITLE: str = "showroom-api"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: Optional[str] = None

    # DB
    DATABASE_URL: str = Field("sqlite:///./showroom.db", description="postgresql+psycopg://appuser:<PASS>@db:5432/appdb")
    DB_SCHEMA: Optional[str] = Field(None, description="empty -> unqualified tables")
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE_S: int = 1800
    DB_POOL_TIMEOUT_S: int = 30
    DB_USE_NULLPOOL: bool = False
    SQLALCHEMY_CREATE_ALL: bool = False

    # Object storage (Supabase Storage compatible REST API)
    STORAGE_URL: str = Field("http://localhost:54321", description="https://<project>.supabase.co")
    STORAGE_KEY: Optional[str] = None
    STORAGE_BUCKET: str = "product-images"
    STORAGE_MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024
    STORAGE_TIMEOUT_S: float = 15.0
    STORAGE_HTTP_LOG: bool = False

    # Image links: hosts whose share links get rewritten to direct-view URLs
    IMAGE_SHARE_HOSTS: str = "drive.google.com,docs.google.com"

    # Admin sessions; 0 -> valid until sign-out or restart
    ADMIN_SESSION_TTL_S: int = 0

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @property
    def share_hosts(self) -> tuple[str, ...]:
        return tuple(h.strip().lower() for h in self.IMAGE_SHARE_HOSTS.split(",") if h.strip())

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in (self.CORS_ORIGINS or "").split(",") if o.strip()]


settings = Settings()
