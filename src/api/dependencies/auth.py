"""
API Key authentication dependency.

Optional authentication controlled by API_AUTH_ENABLED environment variable.
When enabled, requires X-API-Key header matching API_KEY env variable.

Both variables are read per request, so toggling them does not require
rebuilding the app.
"""

import os
import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from src.infra.data_paths import _get_env_bool

api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,  # We handle the error ourselves for optional auth
    description="API key for authentication (required when API_AUTH_ENABLED=true)",
)


def is_auth_enabled() -> bool:
    """Check API_AUTH_ENABLED."""
    return _get_env_bool("API_AUTH_ENABLED", False)


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    Verify API key from X-API-Key header.

    Behavior:
    - When API_AUTH_ENABLED=false: Always passes (returns None)
    - When API_AUTH_ENABLED=true: Requires valid API key

    Raises:
        HTTPException: 401 if auth enabled and key is missing/invalid

    Returns:
        The API key if valid, None if auth disabled
    """
    if not is_auth_enabled():
        return None

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    expected = os.getenv("API_KEY", "")
    if not expected or not secrets.compare_digest(api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key
