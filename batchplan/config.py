from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)


def _normalise_prefix(raw_prefix: str) -> str:
    raw_prefix = raw_prefix.strip()
    if not raw_prefix or raw_prefix == "/":
        return ""
    if not raw_prefix.startswith("/"):
        raw_prefix = f"/{raw_prefix}"
    return raw_prefix.rstrip("/")


def _int_tuple(raw: str) -> tuple[int, ...]:
    return tuple(int(token) for token in raw.split(",") if token.strip())


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    SECRET_KEY: str = os.getenv("SECRET_KEY", "change_me")
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL", "sqlite:///batchplan.db")
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    SQLALCHEMY_ECHO: bool = os.getenv("DB_ECHO", "false").lower() == "true"
    URL_PREFIX: str = _normalise_prefix(os.getenv("URL_PREFIX", ""))
    API_TITLE: str = os.getenv("API_TITLE", "Batchplan API")
    API_VERSION: str = os.getenv("API_VERSION", "0.1.0")

    SCHEDULE_TIMEZONE: str = os.getenv("SCHEDULE_TIMEZONE", "Asia/Kolkata")
    OPERATING_DAY_END: str = os.getenv("OPERATING_DAY_END", "22:00")
    ALLOWED_DURATIONS: tuple[int, ...] = _int_tuple(
        os.getenv("ALLOWED_DURATIONS", "30,45,60,75,90,120")
    )
    DEFAULT_DURATION_MINUTES: int = int(os.getenv("DEFAULT_DURATION_MINUTES", "90"))
    MAX_TEACHER_SESSIONS_PER_DAY: int = int(os.getenv("MAX_TEACHER_SESSIONS_PER_DAY", "4"))

    ROOM_PROVISIONER: str = os.getenv("ROOM_PROVISIONER", "local")
    ROOM_PROVISIONER_URL: str = os.getenv("ROOM_PROVISIONER_URL", "")
    ROOM_PROVISIONER_TOKEN: str = os.getenv("ROOM_PROVISIONER_TOKEN", "")
    ROOM_PROVISIONER_TIMEOUT: float = float(os.getenv("ROOM_PROVISIONER_TIMEOUT", "10"))
    ROOM_PREFIX: str = os.getenv("ROOM_PREFIX", "batchplan")
    JOIN_BASE_URL: str = os.getenv("JOIN_BASE_URL", "http://localhost:8000")

    REMINDER_WINDOWS: tuple[int, ...] = _int_tuple(os.getenv("REMINDER_WINDOWS", "30,15,0"))
    REMINDER_TOLERANCE_MINUTES: float = float(os.getenv("REMINDER_TOLERANCE_MINUTES", "2.5"))

    DEFAULT_CANCEL_REASON: str = os.getenv("DEFAULT_CANCEL_REASON", "Cancelled by operator")


@dataclass
class TestConfig(Config):
    TESTING: bool = True
    SECRET_KEY: str = "test"
    SQLALCHEMY_DATABASE_URI: str = "sqlite:///:memory:"
    SQLALCHEMY_ECHO: bool = False
    ROOM_PROVISIONER: str = "local"


config = Config()
