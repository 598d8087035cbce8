# backend/stockledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Optimistic-concurrency retry policy for ledger writes
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))
    STOCK_RETRY_BACKOFF_SECONDS = float(os.environ.get("STOCK_RETRY_BACKOFF_SECONDS", "0.1"))

    # Products without their own alert level use this threshold
    STOCK_LOW_STOCK_THRESHOLD = int(os.environ.get("STOCK_LOW_STOCK_THRESHOLD", "5"))
