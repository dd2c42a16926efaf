"""
Data path helpers for the cron service.

Centralized path management for persisted state and logs.

Directory structure:
data/
 └── cron/
     └── jobs.json             # Cron job store

logs/                          # Service logs (see logging_config)

Environment Variables:
- CRON_STORE: Override the cron store file path (default: data/cron/jobs.json)
- CRON_LOG_DIR: Override the log directory (default: logs)
"""

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CRON_STORE_FILENAME = "jobs.json"

# =============================================================================
# Environment Variable Helpers
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[DataPaths] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: Optional[float]) -> Optional[float]:
    """Get float value from environment variable. "none"/"off" yields None."""
    val = os.getenv(key)
    if val is None:
        return default
    if val.strip().lower() in ("none", "off", ""):
        return None
    try:
        return float(val)
    except ValueError:
        logger.warning(f"[DataPaths] Invalid number for {key}: {val}, using default: {default}")
    return default


def _get_env_str(key: str) -> Optional[str]:
    """Get a non-empty string from environment variable, else None."""
    val = os.getenv(key)
    if val is None or not val.strip():
        return None
    return val.strip()

# =============================================================================
# Base Paths (relative to project root)
# =============================================================================

def get_project_root() -> Path:
    """
    Get the project root directory.

    File is at src/infra/data_paths.py, so project root is 2 levels up.

    Returns:
        Path: Project root directory
    """
    return Path(__file__).parent.parent.parent.resolve()


def get_data_root() -> Path:
    """
    Get the data root directory.

    Returns:
        Path: data/ directory path
    """
    return get_project_root() / "data"


# =============================================================================
# Cron Paths
# =============================================================================

def get_cron_dir() -> Path:
    """Get cron data directory."""
    return get_data_root() / "cron"


def get_cron_store_path() -> Path:
    """
    Get cron job store file path.

    Can be overridden via CRON_STORE environment variable.

    Default: data/cron/jobs.json

    Returns:
        Path: Cron store file
    """
    env_path = _get_env_str("CRON_STORE")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return get_cron_dir() / CRON_STORE_FILENAME


def resolve_store_path(store: Optional[str]) -> Path:
    """
    Resolve a configured store value to a file path.

    A value ending in a path separator or naming an existing directory is
    treated as a directory holding jobs.json. "~" is expanded.
    """
    if not store:
        return get_cron_store_path()
    path = Path(store).expanduser()
    if store.endswith(("/", os.sep)) or path.is_dir():
        path = path / CRON_STORE_FILENAME
    return path.resolve()


def get_logs_dir() -> Path:
    """
    Get logs directory.

    Can be overridden via CRON_LOG_DIR environment variable.

    Returns:
        Path: Logs directory
    """
    env_path = _get_env_str("CRON_LOG_DIR")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return get_project_root() / "logs"


