# backend/hpstock/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/hpstock.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///hpstock.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Business dates ("today") are resolved in the shop's local timezone
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Jakarta")

    # Typed by the operator to confirm an irreversible full reset
    RESET_CONFIRMATION_PHRASE = os.environ.get("RESET_CONFIRMATION_PHRASE", "RESET DATA")

    MIN_IMEI_LENGTH = int(os.environ.get("MIN_IMEI_LENGTH", "10"))
    KPI_WINDOW_DAYS = int(os.environ.get("KPI_WINDOW_DAYS", "30"))
    HISTORY_DEFAULT_LIMIT = int(os.environ.get("HISTORY_DEFAULT_LIMIT", "100"))
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "5"))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
