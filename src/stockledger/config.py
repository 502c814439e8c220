from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
import os
import sys

from stockledger.domain.errors import InvalidConfigurationError


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class EngineSettings:
    lock_timeout_seconds: float = 5.0
    max_retries: int = 5
    retry_backoff_seconds: float = 0.05
    busy_timeout_seconds: float = 5.0
    expiry_warning_days: int = 30


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "StockLedger") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "ledger.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def _read(environ: Mapping[str, str], key: str, cast, default):
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise InvalidConfigurationError(f"Invalid value for {key}: {raw!r}") from e


def load_settings(environ: Mapping[str, str] | None = None) -> EngineSettings:
    """Build engine settings from STOCKLEDGER_* environment variables."""
    env = os.environ if environ is None else environ
    defaults = EngineSettings()
    settings = EngineSettings(
        lock_timeout_seconds=_read(env, "STOCKLEDGER_LOCK_TIMEOUT", float, defaults.lock_timeout_seconds),
        max_retries=_read(env, "STOCKLEDGER_MAX_RETRIES", int, defaults.max_retries),
        retry_backoff_seconds=_read(env, "STOCKLEDGER_RETRY_BACKOFF", float, defaults.retry_backoff_seconds),
        busy_timeout_seconds=_read(env, "STOCKLEDGER_BUSY_TIMEOUT", float, defaults.busy_timeout_seconds),
        expiry_warning_days=_read(env, "STOCKLEDGER_EXPIRY_WARNING_DAYS", int, defaults.expiry_warning_days),
    )
    if settings.lock_timeout_seconds <= 0 or settings.busy_timeout_seconds <= 0:
        raise InvalidConfigurationError("Timeouts must be > 0.")
    if settings.max_retries < 0 or settings.retry_backoff_seconds < 0:
        raise InvalidConfigurationError("Retry settings must be >= 0.")
    if settings.expiry_warning_days < 0:
        raise InvalidConfigurationError("Expiry warning days must be >= 0.")
    return settings
