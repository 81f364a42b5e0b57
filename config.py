"""
Runtime configuration

Values are read once from the environment (and a local .env file).
"""

import os
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "hostelDB")

JWT_TOKEN_SECRET_KEY = os.getenv("JWT_TOKEN_SECRET_KEY", "")
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_HOURS = _int_env("JWT_EXPIRES_HOURS", 5)
COOKIE_NAME = "token"
COOKIE_MAX_AGE = _int_env("COOKIE_MAX_AGE", 3600)

APP_ENV = os.getenv("NODE_ENV") or os.getenv("APP_ENV", "development")

STRIPE_PAYMENT_SECRET_KEY = os.getenv("STRIPE_PAYMENT_SECRET_KEY", "")
STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")
PAYMENT_TIMEOUT_S = 10.0

PORT = _int_env("PORT", 5000)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

MEALS_PAGE_SIZE = _int_env("MEALS_PAGE_SIZE", 2)

_DEFAULT_ORIGINS = "https://hostel-management-28-01-24.netlify.app,http://localhost:5173"
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", _DEFAULT_ORIGINS).split(",")
    if origin.strip()
]


def is_production() -> bool:
    return APP_ENV == "production"
