"""
Pytest configuration and fixtures

Every test gets its own SQLite file under tmp_path, so nothing leaks between
tests and separate sessions see each other's commits the way they would on
Postgres.
"""
import os
import sys

from cryptography.fernet import Fernet

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are read once at import time; pin everything before the app loads.
os.environ["SECRET_KEY"] = "test-secret-key-for-the-journal-api-0123456789"
os.environ["TOKEN_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["STRAVA_CLIENT_ID"] = "12345"
os.environ["STRAVA_CLIENT_SECRET"] = "strava-test-secret"
os.environ["STRAVA_REDIRECT_URI"] = "https://api.example.test/api/strava/callback"
os.environ["APP_BASE_URL"] = "https://app.example.test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FORMAT"] = "text"
os.environ.pop("API_KEY", None)
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

from fastapi.testclient import TestClient  # noqa: E402

from core.config import settings  # noqa: E402
from core.database import Database  # noqa: E402
from core.security import create_access_token  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_token_encryption():
    """Reset the encryption singleton so each test picks up the configured key."""
    import services.token_encryption as te_mod
    te_mod._token_encryption = None
    yield
    te_mod._token_encryption = None


@pytest.fixture(autouse=True)
def _reset_redis():
    """Drop any cached Redis client so settings changes take effect."""
    from core.cache import reset_redis_client
    reset_redis_client()
    yield
    reset_redis_client()


@pytest.fixture(autouse=True)
def _open_api_key(monkeypatch):
    """Ingest endpoints are open unless a test sets a key."""
    monkeypatch.setattr(settings, "API_KEY", None)


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'journal.db'}").open()
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def db_session(database):
    session = database.new_session()
    yield session
    session.close()


@pytest.fixture
def strava_http():
    """Stand-in for the requests.Session every StravaClient uses."""
    return MagicMock()


@pytest.fixture
def app(database, strava_http):
    from main import create_app

    application = create_app()
    application.state.database = database
    application.state.strava_http_session = strava_http
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def user_id():
    return "user-1"


@pytest.fixture
def auth_headers(user_id):
    token = create_access_token({"sub": user_id})
    return {"Authorization": f"Bearer {token}"}


def fake_response(status_code=200, json_body=None, headers=None, text=""):
    """A requests.Response look-alike."""
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    response.reason = "Error" if status_code >= 400 else "OK"
    if json_body is None and text:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = json_body
    return response


@pytest.fixture
def make_response():
    return fake_response
