# backend/mocards/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/mocards.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///mocards.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Clinic password hashing cost
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Card identifiers: MOC-<stamp>-<seq> / MOB-<stamp>
    CARD_CONTROL_PREFIX = os.environ.get("CARD_CONTROL_PREFIX", "MOC")
    CARD_BATCH_PREFIX = os.environ.get("CARD_BATCH_PREFIX", "MOB")

    CARD_VALIDITY_YEARS = int(os.environ.get("CARD_VALIDITY_YEARS", "1"))

    # Bulk minting is split into batches of this size
    CARD_BATCH_PAGE_SIZE = int(os.environ.get("CARD_BATCH_PAGE_SIZE", "100"))
    CARD_MAX_BATCH_SIZE = int(os.environ.get("CARD_MAX_BATCH_SIZE", "10000"))

    # Transient repository failures (locks, dropped connections)
    REPOSITORY_RETRY_ATTEMPTS = int(os.environ.get("REPOSITORY_RETRY_ATTEMPTS", "3"))
    REPOSITORY_RETRY_BACKOFF = float(os.environ.get("REPOSITORY_RETRY_BACKOFF", "0.1"))


def get_setting(name: str, default=None):
    """Read a setting from the active Flask app, falling back to Config."""
    from flask import current_app, has_app_context

    if has_app_context():
        return current_app.config.get(name, getattr(Config, name, default))
    return getattr(Config, name, default)
