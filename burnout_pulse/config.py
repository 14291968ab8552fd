"""Configuration helpers for Burnout Pulse."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass(slots=True)
class Settings:
    """Runtime configuration values loaded from environment variables."""

    api_key: str
    database_path: Path
    upload_dir: Optional[Path] = None
    max_upload_bytes: int = 10 * 1024 * 1024
    token_ttl_days: int = 365
    frontend_url: str = "http://localhost:3000"
    log_level: str = "info"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive")
    return value


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings from the environment, optionally from a specific file."""

    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    api_key = os.getenv("API_KEY")
    if not api_key:
        raise RuntimeError("API_KEY must be configured")

    db_path = Path(os.getenv("DATABASE_PATH", "burnout_pulse.db")).expanduser()
    upload_dir = os.getenv("UPLOAD_DIR")

    return Settings(
        api_key=api_key,
        database_path=db_path,
        upload_dir=Path(upload_dir).expanduser() if upload_dir else None,
        max_upload_bytes=_int_env("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        token_ttl_days=_int_env("TOKEN_TTL_DAYS", 365),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/"),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )


__all__ = ["Settings", "load_settings"]
