import os
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_ENV: str = "development"

    DATABASE_URL: str = "sqlite://db.sqlite3"

    # storage backend: "local" or "s3"
    STORAGE_BACKEND: str = "local"
    LOCAL_STORAGE_PATH: str = os.path.join(os.getcwd(), "storage")

    S3_ENDPOINT: str = ""
    S3_BUCKET: str = ""
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_REGION: str = "eu-west-2"
    S3_VIRTUAL_HOST: bool = False
    S3_VERIFY_SSL: bool = True

    # keys are prefixed with this so dev/test/prod never collide in a shared bucket
    STORAGE_KEY_NAMESPACE: Optional[str] = None

    SECRET_KEY: str = "dev-secret-key-change-me"
    SIGNED_URL_EXPIRES_IN: int = 300
    DIRECT_UPLOAD_EXPIRES_IN: int = 600
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    LOG_LEVEL: str = "INFO"

    CLEANUP_GRACE_SECONDS: int = 0


settings = Settings()

APP_ENV = settings.APP_ENV
DATABASE_URL = settings.DATABASE_URL
STORAGE_BACKEND = settings.STORAGE_BACKEND
LOCAL_STORAGE_PATH = settings.LOCAL_STORAGE_PATH
S3_ENDPOINT = settings.S3_ENDPOINT
S3_BUCKET = settings.S3_BUCKET
S3_ACCESS_KEY = settings.S3_ACCESS_KEY
S3_SECRET_KEY = settings.S3_SECRET_KEY
S3_REGION = settings.S3_REGION
S3_VIRTUAL_HOST = settings.S3_VIRTUAL_HOST
S3_VERIFY_SSL = settings.S3_VERIFY_SSL
STORAGE_KEY_NAMESPACE = settings.STORAGE_KEY_NAMESPACE or settings.APP_ENV
SECRET_KEY = settings.SECRET_KEY
SIGNED_URL_EXPIRES_IN = settings.SIGNED_URL_EXPIRES_IN
DIRECT_UPLOAD_EXPIRES_IN = settings.DIRECT_UPLOAD_EXPIRES_IN
PUBLIC_BASE_URL = settings.PUBLIC_BASE_URL
LOG_LEVEL = settings.LOG_LEVEL
CLEANUP_GRACE_SECONDS = settings.CLEANUP_GRACE_SECONDS
