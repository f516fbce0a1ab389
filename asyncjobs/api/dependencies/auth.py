"""
API Key authentication dependency.

Optional authentication controlled by the API_AUTH_ENABLED environment
variable, read on every request. When enabled, requests must carry an
X-API-Key header equal to API_KEY.
"""

import logging
import os
import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)


api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,
    description="API key for authentication (required when API_AUTH_ENABLED=true)",
)


def auth_enabled() -> bool:
    return os.getenv("API_AUTH_ENABLED", "false").lower() == "true"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    Verify the X-API-Key header.

    Raises:
        HTTPException: 401 if auth is enabled and the key is missing or wrong

    Returns:
        The API key if valid, None if auth is disabled
    """
    if not auth_enabled():
        return None

    if not api_key:
        raise _unauthorized("Missing API key. Provide X-API-Key header.")

    expected = os.getenv("API_KEY", "")
    if not expected or not secrets.compare_digest(api_key, expected):
        logger.warning("Rejected request with invalid API key")
        raise _unauthorized("Invalid API key")

    return api_key
