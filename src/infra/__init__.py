"""
Infrastructure module - logging, paths, and common utilities.
"""

from .data_paths import (
    get_project_root,
    get_data_root,
    get_cron_dir,
    get_cron_store_path,
    resolve_store_path,
    get_logs_dir,
)

from .logging_config import setup_logging

__all__ = [
    # data_paths
    "get_project_root",
    "get_data_root",
    "get_cron_dir",
    "get_cron_store_path",
    "resolve_store_path",
    "get_logs_dir",
    # logging
    "setup_logging",
]
