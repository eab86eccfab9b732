# backend/apexflow/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/apexflow.sqlite3 unless overridden
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///apexflow.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # How many times a reconciliation is re-attempted on version conflicts
    RECONCILE_RETRY_ATTEMPTS = int(os.environ.get("RECONCILE_RETRY_ATTEMPTS", "3"))

    # Only used to format human-readable status messages
    CURRENCY_SYMBOL = os.environ.get("CURRENCY_SYMBOL", "₹")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
    RECONCILE_RETRY_ATTEMPTS = 1
