"""Environment-driven settings for the contest core."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .db.utils import resolve_sqlite_url

# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_DB_URL = "sqlite:///./dev.db"
DEFAULT_LOCK_TIMEOUT = 10.0
DEFAULT_PRIZE_COUNT = 10


@dataclass(frozen=True)
class Settings:
    """Runtime configuration resolved from the process environment.

    Attributes
    ----------
    database_url : str
        SQLAlchemy URL. Relative sqlite paths are resolved against the repo root.
    lock_timeout : float
        Seconds a mutating contest operation waits for the per-contest lock
        before giving up with :class:`~fairdraw.errors.InfrastructureError`.
    default_prize_count : int
        Number of ranked prizes used when a contest is created without one.
    log_level : str
        Level name passed to :func:`configure_logging`.
    """

    database_url: str = DEFAULT_DB_URL
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    default_prize_count: int = DEFAULT_PRIZE_COUNT
    log_level: str = "INFO"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be a number") from exc
    if value <= 0:
        raise ValueError(f"Environment variable '{name}' must be positive")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be an integer") from exc
    if value <= 0:
        raise ValueError(f"Environment variable '{name}' must be positive")
    return value


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Load settings from ``.env`` (if present) and the process environment."""
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    return Settings(
        database_url=resolve_sqlite_url(os.getenv("DB_URL", DEFAULT_DB_URL), ROOT_DIR),
        lock_timeout=_env_float("FAIRDRAW_LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT),
        default_prize_count=_env_int("FAIRDRAW_DEFAULT_PRIZE_COUNT", DEFAULT_PRIZE_COUNT),
        log_level=os.getenv("FAIRDRAW_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts and local runs."""
    logging.basicConfig(
        level=level or load_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ["Settings", "load_settings", "configure_logging", "ROOT_DIR"]
