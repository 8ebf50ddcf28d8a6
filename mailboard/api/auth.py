"""
API Key Authentication for FastAPI

When API_KEY is configured, every /api route requires a matching X-API-Key
header. Without API_KEY the dashboard API is open (local single-user mode).
"""
import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from mailboard.core.config import get_settings

# API Key header name
API_KEY_NAME = "X-API-Key"

api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> Optional[str]:
    """
    Verify the X-API-Key header against settings.api_key.

    Raises:
        HTTPException: 401 when the header is missing, 403 when it is wrong
    """
    expected = get_settings().api_key
    if not expected:
        return None

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API Key. Include 'X-API-Key' header."
        )

    # Constant-time comparison
    if not secrets.compare_digest(api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API Key"
        )

    return api_key
