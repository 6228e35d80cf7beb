# backend/backoffice/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///backoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Lottery pack reception
    LOTTERY_BATCH_MAX_SIZE = int(os.environ.get("LOTTERY_BATCH_MAX_SIZE", "100"))

    # Day-close staging window (minutes)
    DAY_CLOSE_DEFAULT_EXPIRY_MINUTES = int(os.environ.get("DAY_CLOSE_DEFAULT_EXPIRY_MINUTES", "60"))
    DAY_CLOSE_MIN_EXPIRY_MINUTES = 5
    DAY_CLOSE_MAX_EXPIRY_MINUTES = 120
