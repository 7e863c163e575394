"""Application configuration.

Environment variables override all defaults.
SECRET_KEY must be set in production; development falls back to a weak default with a warning.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Local development reads backend/.env; real environment variables win
load_dotenv(dotenv_path=Path(__file__).resolve().parents[2] / ".env", override=False)


def _csv(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings:
    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./medlink.db")

    # Bearer tokens issued by the identity provider
    SECRET_KEY: str = os.getenv("SECRET_KEY", None)
    if not SECRET_KEY:
        if os.getenv("ENVIRONMENT", "development") == "production":
            raise ValueError(
                "SECRET_KEY must be set in production environment. "
                "Generate with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
            )
        import warnings
        warnings.warn(
            "SECRET_KEY not set in environment. Using development default. "
            "Set SECRET_KEY in .env to a strong random value.",
            RuntimeWarning,
        )
        SECRET_KEY = "development-only-weak-default-change-in-production"

    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

    CORS_ORIGINS: List[str] = _csv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )
    ALLOWED_HOSTS: List[str] = _csv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver")

    # Chapa payment gateway
    CHAPA_SECRET_KEY: str = os.getenv("CHAPA_SECRET_KEY", "")
    CHAPA_BASE_URL: str = os.getenv("CHAPA_BASE_URL", "https://api.chapa.co/v1")
    CHAPA_WEBHOOK_SECRET: str = os.getenv("CHAPA_WEBHOOK_SECRET", "")
    CHAPA_TIMEOUT_SECONDS: int = int(os.getenv("CHAPA_TIMEOUT_SECONDS", "15"))
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")
    BACKEND_URL: str = os.getenv("BACKEND_URL", "http://localhost:8000")
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "ETB")

    # Listing
    PAGE_SIZE_DEFAULT: int = 10
    PAGE_SIZE_MAX: int = 100

    # Orders above this total are flagged urgent for the seller
    URGENT_ORDER_THRESHOLD: int = int(os.getenv("URGENT_ORDER_THRESHOLD", "10000"))

    # Bootstrap admin created on first start when the users table is empty
    ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "")

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
