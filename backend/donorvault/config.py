from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parents[2]
DEV_JWT_SECRET = "dev-jwt-secret-key-change-me-at-least-32-bytes"

load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    cleaned = raw.strip()
    return cleaned or default


def env_origins() -> list[str]:
    raw_origins = os.getenv("FRONTEND_ORIGINS")
    if raw_origins:
        origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
        if origins:
            return origins

    raw_origin = os.getenv("FRONTEND_ORIGIN")
    if raw_origin:
        origin = raw_origin.strip()
        if origin:
            return [origin]

    return ["http://localhost:5173", "http://127.0.0.1:5173"]


class Config:
    ENV = env_str("ENV", "development")

    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'donorvault.db'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", DEV_JWT_SECRET)
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=env_int("ACCESS_TOKEN_EXPIRES_DAYS", 7))
    # Bearer header first; the JSON "token" field is still accepted for older clients.
    JWT_TOKEN_LOCATION = ["headers", "json"]
    JWT_JSON_KEY = "token"

    FRONTEND_ORIGINS = env_origins()
    LOG_LEVEL = env_str("LOG_LEVEL", "INFO")

    PASSWORD_MIN_LENGTH = env_int("PASSWORD_MIN_LENGTH", 6)
    DEFAULT_LANGUAGE = env_str("DEFAULT_LANGUAGE", "es")

    LOGIN_RATE_LIMIT_WINDOW_SECONDS = env_int("LOGIN_RATE_LIMIT_WINDOW_SECONDS", 300)
    LOGIN_RATE_LIMIT_MAX_ATTEMPTS = env_int("LOGIN_RATE_LIMIT_MAX_ATTEMPTS", 10)

    STORAGE_BACKEND = env_str("STORAGE_BACKEND", "local")
    STORAGE_ROOT = os.getenv("STORAGE_ROOT", str(BASE_DIR / "storage"))
    PUBLIC_BASE_URL = env_str("PUBLIC_BASE_URL", "http://127.0.0.1:5000")
    S3_BUCKET = env_str("S3_BUCKET", "")
    S3_ENDPOINT_URL = env_str("S3_ENDPOINT_URL", "")
    AWS_REGION = env_str("AWS_REGION", "us-east-1")
    SIGNED_URL_TTL_SECONDS = env_int("SIGNED_URL_TTL_SECONDS", 3600)

    STRIPE_SECRET_KEY = env_str("STRIPE_SECRET_KEY", "")
    DONATION_MIN_AMOUNT = env_int("DONATION_MIN_AMOUNT", 5)
    DONATION_MAX_AMOUNT = env_int("DONATION_MAX_AMOUNT", 1000)

    GENERAL_FOLDER_ID = 1
    PREMIUM_FOLDER_ID = 2
    PREMIUM_DONATION_THRESHOLD = env_int("PREMIUM_DONATION_THRESHOLD", 100)

    MAX_CONTENT_LENGTH = env_int("MAX_CONTENT_LENGTH", 1024 * 1024 * 1024)

