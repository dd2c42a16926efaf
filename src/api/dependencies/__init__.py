"""
API Dependencies package.

Cross-cutting concerns like authentication and service lookup.
"""

from .auth import verify_api_key, is_auth_enabled
from .cron import get_cron_service

__all__ = ["verify_api_key", "is_auth_enabled", "get_cron_service"]
