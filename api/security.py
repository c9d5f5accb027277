"""
API key authentication.

Each resource under /api/v1 has its own key, sent in the X-API-Key header.
"""
import secrets
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from config import Settings, get_settings

logger = structlog.get_logger(__name__)

INVALID_API_KEY = "Invalid or missing API key"

api_key_header = APIKeyHeader(name=get_settings().api_key_header, auto_error=False)


def expected_key_for(path: str, settings: Settings) -> Optional[str]:
    """Key configured for the resource prefix that ``path`` falls under."""
    for prefix, key in settings.api_keys_by_prefix().items():
        if path == prefix or path.startswith(prefix + "/"):
            return key
    return None


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Reject requests whose key does not match the resource's key.

    Raises:
        HTTPException: 403 if the key is missing, wrong, or the path has no key configured
    """
    path = request.url.path
    expected = expected_key_for(path, settings)

    if not api_key or expected is None or not secrets.compare_digest(api_key, expected):
        logger.warning(
            "api_key_rejected",
            path=path,
            key_present=bool(api_key),
            client_host=request.client.host if request.client else None,
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=INVALID_API_KEY)
