from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "internship-portal-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "Internship Portal")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/portal_dev")

    # Auth
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    access_ttl_min: int = int(os.getenv("ACCESS_TTL_MIN", "15"))
    refresh_ttl_min: int = int(os.getenv("REFRESH_TTL_MIN", "10080"))  # 7d

    # Route guard
    public_paths: list[str] = os.getenv("PUBLIC_PATHS", "/,/login,/signup,/auth/callback,/not-authorized").split(",")
    guard_timeout_seconds: float = float(os.getenv("GUARD_TIMEOUT_SECONDS", "10"))

    # Blob storage (S3 API)
    storage_endpoint: str = os.getenv("STORAGE_ENDPOINT", "http://minio:9000")
    storage_public_url: str = os.getenv("STORAGE_PUBLIC_URL", "http://localhost:9000")
    storage_access_key: str = os.getenv("STORAGE_ACCESS_KEY", "minioadmin")
    storage_secret_key: str = os.getenv("STORAGE_SECRET_KEY", "minioadmin")
    storage_bucket: str = os.getenv("STORAGE_BUCKET", "uploads")

    # Upload limits
    picture_max_bytes: int = int(os.getenv("PICTURE_MAX_BYTES", str(1024 * 1024)))
    picture_max_dim: int = int(os.getenv("PICTURE_MAX_DIM", "1080"))

    # Evaluation email function
    notify_url: str = os.getenv("NOTIFY_URL", "http://localhost:54321/functions/v1/send-eval-email")
    notify_api_key: str = os.getenv("NOTIFY_API_KEY", "")
    notify_timeout_seconds: float = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "15"))

settings = Settings()
