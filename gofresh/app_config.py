# gofresh/app_config.py

from __future__ import annotations

import os
from typing import List

from pydantic import BaseModel, Field


class AppConfig(BaseModel):
    """
    All runtime configuration in one place.
    Values come from environment variables (see load_config).
    """

    # ------------------------------
    # Mongo
    # ------------------------------
    mongo_uri: str = "mongodb://localhost:27017/gofresh_marketplace"
    mongo_db_name: str = "gofresh_marketplace"

    # ------------------------------
    # JWT
    # ------------------------------
    jwt_secret_key: str = "change-me-super-secret"
    access_expires_h: int = Field(default=6, gt=0)
    refresh_expires_d: int = Field(default=14, gt=0)

    # ------------------------------
    # Payments (Razorpay)
    # ------------------------------
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_api_base: str = "https://api.razorpay.com/v1"
    payment_timeout: int = Field(default=20, gt=0)
    currency: str = "INR"

    # ------------------------------
    # HTTP / logging
    # ------------------------------
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    log_json: bool = False


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def load_config() -> AppConfig:
    """
    Load configuration from the environment in a clean centralized way.
    """
    return AppConfig(
        mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017/gofresh_marketplace"),
        mongo_db_name=os.getenv("MONGO_DB_NAME", "gofresh_marketplace"),
        jwt_secret_key=os.getenv("JWT_SECRET_KEY", "change-me-super-secret"),
        access_expires_h=int(os.getenv("JWT_ACCESS_TOKEN_EXPIRES_H", "6")),
        refresh_expires_d=int(os.getenv("JWT_REFRESH_TOKEN_EXPIRES_D", "14")),
        razorpay_key_id=os.getenv("RAZORPAY_KEY_ID", ""),
        razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET", ""),
        razorpay_api_base=os.getenv("RAZORPAY_API_BASE", "https://api.razorpay.com/v1").rstrip("/"),
        payment_timeout=int(os.getenv("PAYMENT_TIMEOUT", "20")),
        currency=os.getenv("CURRENCY", "INR"),
        cors_origins=_split_csv(os.getenv("CORS_ORIGINS", "*")) or ["*"],
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=os.getenv("LOG_JSON", "0") == "1",
    )
