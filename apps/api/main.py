"""
FastAPI application entry point.

`create_app()` wires middleware, error handlers and routers. The Database
is built and opened on startup (unless one was attached to app.state
beforehand, as tests do) and closed on shutdown.
"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.database import Database
from core.exceptions import APIException, PersistenceError
from core.logging import setup_logging
from routers import health_ingest, journal, profile, progress, strava

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = getattr(app.state, "database", None)
    owns_database = database is None
    if owns_database:
        database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO).open()
        if database.dialect == "sqlite":
            # Local/dev store; Postgres deployments run `alembic upgrade head`.
            database.create_all()
        app.state.database = database
    try:
        yield
    finally:
        if owns_database:
            database.close()
            app.state.database = None


def _cors_origins():
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
    return [
        "http://localhost:3000",
        "http://localhost:8081",  # Expo dev server
        "http://127.0.0.1:3000",
    ]


def create_app() -> FastAPI:
    app = FastAPI(
        title="Hybrid Journal API",
        description="Workout journal, Apple Health ingest and Strava sync",
        version="1.0.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing information."""
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={
                    "extra_fields": {
                        "method": request.method,
                        "path": request.url.path,
                        "error": str(e),
                    }
                }
            )
            raise

        process_time = time.time() - start_time
        logger.info(
            f"Response: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                }
            }
        )
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed bodies and query strings are a 400, before anything is written."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid payload", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "code": exc.error_code},
            headers=exc.headers,
        )

    @app.exception_handler(PersistenceError)
    async def persistence_exception_handler(request: Request, exc: PersistenceError):
        logger.error(
            f"Persistence failure: {exc}",
            extra={"extra_fields": {"method": request.method, "path": request.url.path}},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Database error"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error(
            f"Unhandled exception: {exc}",
            exc_info=True,
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                }
            }
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    @app.get("/healthz")
    async def healthz():
        """Liveness only; no dependencies checked."""
        return {"ok": True}

    @app.get("/health")
    def health(request: Request):
        """
        Health check for load balancers and uptime monitors.

        Returns:
            - 200: database reachable
            - 503: database unavailable
        """
        database = request.app.state.database
        if not database.check_connection():
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "database": "unavailable"},
            )
        return {"status": "healthy", "timestamp": time.time()}

    app.include_router(health_ingest.router)
    app.include_router(strava.router)
    app.include_router(journal.router)
    app.include_router(progress.router)
    app.include_router(profile.router)

    return app


app = create_app()
