"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, token
signing, default tax rates and logging. It uses environment variables for sensitive information and defaults for
development. In production, make sure to set SECRET_KEY and JWT_SECRET to strong random values.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'vendor_billing.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens issued by /auth/login
    JWT_SECRET = os.environ.get("JWT_SECRET", "fallback-secret-change-in-production")
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRES_DAYS = int(os.environ.get("JWT_EXPIRES_DAYS", "7"))

    # Percent values used when a vendor has no VAT configuration yet
    DEFAULT_VAT_RATE = os.environ.get("DEFAULT_VAT_RATE", "7")
    DEFAULT_WHT_RATE = os.environ.get("DEFAULT_WHT_RATE", "3")

    # Bootstrap admin created by `flask seed`
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@example.com")
    ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # App name (returned by the root endpoint)
    APP_NAME = "Vendor Billing System API"


class TestingConfig(Config):
    """In-memory database for the pytest suite."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET = "testing-secret-with-enough-length-for-hs256"
    LOG_LEVEL = "WARNING"
