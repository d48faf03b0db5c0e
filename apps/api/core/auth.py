"""
Authentication dependencies.

Provides FastAPI dependencies for:
- The device/ingest API key (optional; open when API_KEY is unset)
- The current session user id, taken from a bearer JWT
"""
from typing import Optional

from fastapi import Depends, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.config import settings
from core.exceptions import UnauthorizedError
from core.security import api_key_matches, get_user_id_from_token

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


def require_api_key(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """
    Guard for the ingest and read endpoints.

    Accepts the key from `x-api-key` or `Authorization: Bearer <key>`.
    """
    expected = settings.API_KEY
    if not expected:
        return

    provided = request.headers.get("x-api-key")
    if not provided and credentials:
        provided = credentials.credentials
    if not api_key_matches(provided, expected):
        raise UnauthorizedError()


def _user_id_from_token(token: Optional[str]) -> str:
    if not token:
        raise UnauthorizedError()
    user_id = get_user_id_from_token(token)
    if not user_id:
        raise UnauthorizedError("Invalid authentication credentials")
    return str(user_id)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Get the current user id from the session bearer token.

    Raises 401 if the token is missing or invalid.
    """
    return _user_id_from_token(credentials.credentials if credentials else None)


def get_current_user_id_for_redirect(
    token: Optional[str] = Query(default=None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Same as get_current_user_id, but also accepts `?token=`.

    Browser navigations (e.g. the Strava connect redirect) cannot set headers.
    """
    return _user_id_from_token(token or (credentials.credentials if credentials else None))
