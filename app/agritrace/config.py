import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    db_timeout_seconds: float

    storage_backend: str
    storage_timeout_seconds: float
    local_storage_root: str
    public_media_base_url: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    s3_public_base_url: str

    id_max_attempts: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number (got {raw!r}).") from e


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///agritrace.db"),
        db_timeout_seconds=_getenv_float("DB_TIMEOUT_SECONDS", 15.0),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_timeout_seconds=_getenv_float("STORAGE_TIMEOUT_SECONDS", 30.0),
        local_storage_root=_getenv("LOCAL_STORAGE_ROOT", ""),
        public_media_base_url=_getenv("PUBLIC_MEDIA_BASE_URL", "/media"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        s3_public_base_url=_getenv("S3_PUBLIC_BASE_URL", ""),
        id_max_attempts=_getenv_int("ID_MAX_ATTEMPTS", 5),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "DB_TIMEOUT_SECONDS": s.db_timeout_seconds,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_TIMEOUT_SECONDS": s.storage_timeout_seconds,
        "LOCAL_STORAGE_ROOT": s.local_storage_root,
        "PUBLIC_MEDIA_BASE_URL": s.public_media_base_url,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "S3_PUBLIC_BASE_URL": s.s3_public_base_url,
        "ID_MAX_ATTEMPTS": s.id_max_attempts,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # photo upload limits (two photos per batch form)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
