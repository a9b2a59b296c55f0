# Core Module: Runtime Configuration
#
# All tunables come from SKYVIEW_* environment variables, optionally loaded
# from a .env file in the working directory. Explicit keyword overrides win
# over the environment, which wins over the defaults below.

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Defaults (mirrors the Android app's constants where one existed)
DEFAULT_DATA_DIR = "data"
DEFAULT_TRASH_RETENTION_DAYS = 30
DEFAULT_PBKDF2_ITERATIONS = 600_000  # OWASP 2023 for PBKDF2-SHA256
DEFAULT_DB_TIMEOUT = 5.0  # seconds
DEFAULT_MAX_FOLDER_DEPTH = 3
DEFAULT_SWEEP_INTERVAL = 6 * 60 * 60  # seconds
DEFAULT_WEATHER_CACHE_MAX_AGE = 30 * 60  # seconds
DEFAULT_AUTO_LOCK_MINUTES = 5
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8000

VAULT_DB_NAME = "vault.db"
WEATHER_DB_NAME = "weather_cache.db"
PREFERENCES_DB_NAME = "user_preferences.db"


@dataclass(frozen=True)
class VaultConfig:
    """Resolved runtime configuration."""

    data_dir: Path = field(default_factory=lambda: Path(DEFAULT_DATA_DIR))
    audit_log_dir: Optional[Path] = None
    trash_retention_days: int = DEFAULT_TRASH_RETENTION_DAYS
    pbkdf2_iterations: int = DEFAULT_PBKDF2_ITERATIONS
    db_timeout: float = DEFAULT_DB_TIMEOUT
    max_folder_depth: int = DEFAULT_MAX_FOLDER_DEPTH
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    weather_cache_max_age: float = DEFAULT_WEATHER_CACHE_MAX_AGE
    api_host: str = DEFAULT_API_HOST
    api_port: int = DEFAULT_API_PORT

    @property
    def vault_db_path(self) -> Path:
        return self.data_dir / VAULT_DB_NAME

    @property
    def weather_db_path(self) -> Path:
        return self.data_dir / WEATHER_DB_NAME

    @property
    def preferences_db_path(self) -> Path:
        return self.data_dir / PREFERENCES_DB_NAME

    @property
    def trash_retention_ms(self) -> int:
        return self.trash_retention_days * 24 * 60 * 60 * 1000

    def with_overrides(self, **overrides) -> "VaultConfig":
        return replace(self, **overrides)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def load_config(env_file: Optional[str] = None, **overrides) -> VaultConfig:
    """Build a VaultConfig from the environment.

    Args:
        env_file: Optional path to a .env file. When None, python-dotenv
            searches the working directory. Existing environment variables
            are never overwritten by the file.
        **overrides: Field values that take precedence over the environment.

    Returns:
        VaultConfig
    """
    load_dotenv(env_file, override=False)

    audit_dir = os.getenv("SKYVIEW_AUDIT_LOG_DIR")
    config = VaultConfig(
        data_dir=Path(os.getenv("SKYVIEW_DATA_DIR", DEFAULT_DATA_DIR)),
        audit_log_dir=Path(audit_dir) if audit_dir else None,
        trash_retention_days=_env_int(
            "SKYVIEW_TRASH_RETENTION_DAYS", DEFAULT_TRASH_RETENTION_DAYS
        ),
        pbkdf2_iterations=_env_int(
            "SKYVIEW_PBKDF2_ITERATIONS", DEFAULT_PBKDF2_ITERATIONS
        ),
        db_timeout=_env_float("SKYVIEW_DB_TIMEOUT", DEFAULT_DB_TIMEOUT),
        max_folder_depth=_env_int(
            "SKYVIEW_MAX_FOLDER_DEPTH", DEFAULT_MAX_FOLDER_DEPTH
        ),
        sweep_interval=_env_float(
            "SKYVIEW_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL
        ),
        weather_cache_max_age=_env_float(
            "SKYVIEW_WEATHER_CACHE_MAX_AGE", DEFAULT_WEATHER_CACHE_MAX_AGE
        ),
        api_host=os.getenv("SKYVIEW_API_HOST", DEFAULT_API_HOST),
        api_port=_env_int("SKYVIEW_API_PORT", DEFAULT_API_PORT),
    )
    if overrides:
        config = config.with_overrides(**overrides)
    return config
