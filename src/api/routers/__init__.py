"""
API Routers package.
"""

from . import cron

__all__ = ["cron"]
