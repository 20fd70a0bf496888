from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class ConfigurationError(RuntimeError):
    pass


def load_env() -> None:
    env_name = os.getenv("APP_ENV", "development")
    candidates = [Path.cwd(), PROJECT_ROOT]
    for base in candidates:
        env_path = base / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            break

    for base in candidates:
        env_specific = base / f".env.{env_name}"
        if env_specific.exists():
            load_dotenv(env_specific, override=True)
            break


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str = "INFO"
    log_dir: str = "logs"
    default_reminder_offset: int = 0
    default_reminder_unit: str = "minutes"
    notification_lookahead_days: int = 30


def load_settings() -> Settings:
    load_env()

    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        raise ConfigurationError("DATABASE_URL is not set. Create a .env file with your connection string.")

    return Settings(
        database_url=database_url,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", "logs"),
        default_reminder_offset=int(os.getenv("DEFAULT_REMINDER_OFFSET", "0")),
        default_reminder_unit=os.getenv("DEFAULT_REMINDER_UNIT", "minutes").strip() or "minutes",
        notification_lookahead_days=int(os.getenv("NOTIFICATION_LOOKAHEAD_DAYS", "30")),
    )


SETTINGS = load_settings()
