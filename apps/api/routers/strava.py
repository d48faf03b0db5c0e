"""
Strava Integration Router

OAuth connect/callback, on-demand activity sync, connection status,
disconnect and the cached activity list.

The callback never surfaces provider text: every outcome is a redirect to
APP_BASE_URL/?tab=profile with either connected=strava or one of
    strava_config_error, strava_denied, strava_invalid, strava_invalid_state,
    strava_token_exchange, strava_db_error, strava_callback_error
"""
import logging
from typing import List, Optional
from urllib.parse import urlencode

import requests
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from core.auth import get_current_user_id, get_current_user_id_for_redirect
from core.config import ConfigurationError, settings
from core.database import Database, get_database, get_db
from core.exceptions import PersistenceError
from schemas import StravaActivityResponse, StravaStatusResponse, StravaSyncResponse
from services.ingestion_normalizer import map_strava_type_to_category
from services.oauth_state import InvalidOAuthState, create_oauth_state, decode_oauth_state
from services.strava_connections import StravaConnectionRepository
from services.strava_service import StravaClient, StravaProviderError, StravaRateLimitError
from services.strava_sync import sync_strava_activities
from services.strava_tokens import StravaNotConnectedError, StravaRefreshError, StravaTokenManager
from services.upsert_store import list_strava_activities

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/strava", tags=["strava"])

CONFIG_ERROR_BODY = {"error": "Server configuration error"}


def get_strava_http_session(request: Request) -> Optional[requests.Session]:
    """HTTP session for Strava calls. None lets each client open its own."""
    return getattr(request.app.state, "strava_http_session", None)


def _token_manager(repository: StravaConnectionRepository, client: StravaClient) -> StravaTokenManager:
    return StravaTokenManager(
        repository,
        client,
        refresh_buffer_s=settings.STRAVA_TOKEN_REFRESH_BUFFER_S,
    )


def _app_redirect(**params) -> RedirectResponse:
    query = urlencode({"tab": "profile", **params})
    return RedirectResponse(url=f"{settings.APP_BASE_URL.rstrip('/')}/?{query}", status_code=302)


@router.get("/connect")
def strava_connect(
    user_id: str = Depends(get_current_user_id_for_redirect),
    http_session: Optional[requests.Session] = Depends(get_strava_http_session),
):
    """
    Start the OAuth handshake: 302 to Strava's authorize page.

    The session token may come as `Authorization: Bearer` or `?token=`.
    """
    try:
        client = StravaClient.from_settings(settings, session=http_session)
    except ConfigurationError as e:
        logger.error(f"Strava connect unavailable: {e}")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=CONFIG_ERROR_BODY)

    state = create_oauth_state(user_id)
    return RedirectResponse(url=client.authorize_url(state), status_code=302)


@router.get("/callback")
def strava_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    scope: Optional[str] = Query(default=None),
    database: Database = Depends(get_database),
    http_session: Optional[requests.Session] = Depends(get_strava_http_session),
):
    """Finish the OAuth handshake and store the connection for the user in `state`."""
    try:
        client = StravaClient.from_settings(settings, session=http_session)
    except ConfigurationError as e:
        logger.error(f"Strava callback unavailable: {e}")
        return _app_redirect(error="strava_config_error")

    if error:
        logger.info(f"Strava authorization declined: {error}")
        return _app_redirect(error="strava_denied")
    if not code or not state:
        return _app_redirect(error="strava_invalid")

    try:
        user_id = decode_oauth_state(state)
    except InvalidOAuthState as e:
        logger.warning(f"Strava callback with bad state: {e}")
        return _app_redirect(error="strava_invalid_state")

    manager = _token_manager(StravaConnectionRepository(database), client)
    try:
        manager.complete_authorization(user_id, code, scope=scope)
    except (StravaProviderError, StravaRateLimitError, StravaRefreshError) as e:
        logger.warning(f"Strava code exchange failed for user {user_id}: {e}")
        return _app_redirect(error="strava_token_exchange")
    except PersistenceError as e:
        logger.error(f"Strava connection not saved for user {user_id}: {e}")
        return _app_redirect(error="strava_db_error")
    except Exception:  # the user always lands back in the app with a typed code
        logger.exception(f"Unexpected Strava callback failure for user {user_id}")
        return _app_redirect(error="strava_callback_error")
    finally:
        client.close()

    return _app_redirect(connected="strava")


@router.post("/sync", response_model=StravaSyncResponse)
def strava_sync(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    database: Database = Depends(get_database),
    http_session: Optional[requests.Session] = Depends(get_strava_http_session),
):
    """
    Pull activities since the last sync (or the last 30 days) and upsert them.

    400 not connected, 429 rate limited (Retry-After set), 500 otherwise.
    """
    try:
        client = StravaClient.from_settings(settings, session=http_session)
    except ConfigurationError as e:
        logger.error(f"Strava sync unavailable: {e}")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=CONFIG_ERROR_BODY)

    repository = StravaConnectionRepository(database)
    try:
        result = sync_strava_activities(
            db,
            user_id,
            repository=repository,
            token_manager=_token_manager(repository, client),
            client=client,
            page_size=settings.STRAVA_PAGE_SIZE,
            max_records=settings.STRAVA_MAX_ACTIVITIES,
            initial_days=settings.STRAVA_INITIAL_SYNC_DAYS,
        )
    except StravaNotConnectedError:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Strava not connected"})
    except StravaRateLimitError as e:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "error": "Rate limit reached",
                "message": "Strava rate limit reached. Please try again later.",
                "retryAfter": e.retry_after_s,
            },
            headers={"Retry-After": str(e.retry_after_s)},
        )
    except StravaRefreshError as e:
        logger.warning(f"Strava sync for user {user_id} stopped at token refresh: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "strava_refresh_failed", "message": "Could not refresh Strava access. Try again later."},
        )
    except StravaProviderError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "strava_provider_error", "status": e.status_code, "code": e.code},
        )
    except PersistenceError:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Database error"},
        )
    finally:
        client.close()

    return StravaSyncResponse(
        success=True,
        imported_count=result.imported,
        updated_count=result.updated,
        last_sync_at=result.last_sync_at,
    )


@router.get("/status", response_model=StravaStatusResponse)
def get_strava_status(
    user_id: str = Depends(get_current_user_id),
    database: Database = Depends(get_database),
):
    """Get Strava connection status for current user."""
    connection = StravaConnectionRepository(database).get(user_id)
    if connection is None:
        return StravaStatusResponse(connected=False)
    return StravaStatusResponse(
        connected=True,
        athlete_id=connection.athlete_id,
        athlete_name=connection.athlete_name,
        scope=connection.scope,
        last_sync_at=connection.last_sync_at,
    )


@router.delete("/connection")
def disconnect_strava(
    user_id: str = Depends(get_current_user_id),
    database: Database = Depends(get_database),
):
    """Forget the Strava link. Reconnecting needs the full OAuth flow again."""
    removed = StravaConnectionRepository(database).delete(user_id)
    return {"success": True, "disconnected": removed}


@router.get("/activities", response_model=List[StravaActivityResponse])
def get_strava_activities(
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Cached Strava activities, newest first."""
    return [
        StravaActivityResponse.model_validate(row).model_copy(
            update={"category": map_strava_type_to_category(row.type)}
        )
        for row in list_strava_activities(db, user_id, limit=limit)
    ]
