import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

# Database imports
import databases

from fastapi import FastAPI, HTTPException, Request, status, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Rate Limiting imports
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter
import redis.asyncio as redis

from playwright.async_api import async_playwright

# Model and Core Service imports
from .models.api_models import (CachedEventsRequest, CachedEventsResponse,
                                HealthResponse, LoginRequest, LoginResponse,
                                LogoutRequest, MessageResponse,
                                NavigateRequest, NavigateResponse)
from .core.browser import BrowserLauncher
from .core.cache_service import CacheGate, DatabaseCacheStore
from .core.constants import (CACHE_MAX_AGE_HOURS, DEFAULT_DATABASE_URL,
                             MSG_CREDENTIALS_REQUIRED, MSG_LOGGED_OUT,
                             MSG_LOGIN_ERROR_PREFIX, MSG_SESSION_EXPIRED,
                             MSG_USERNAME_REQUIRED, PORTAL_LOGIN_URL,
                             SCHEDULE_SETTLE_SECONDS,
                             SESSION_IDLE_TIMEOUT_SECONDS,
                             SESSION_SWEEP_INTERVAL_SECONDS)
from .core.auth_flow import AuthenticationFlow
from .core.errors import AuthenticationFailed, MenuNotFound, SessionNotFound
from .core.service import PlanningService
from .core.session import SessionManager


# Load environment variables from .env file located in the same directory as this script
# or any parent directory.
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
log = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


# --- Lifespan Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Lifespan: Application startup sequence initiated.")
    # --- Redis Connection for Rate Limiter (Optional) ---
    rate_limiting_enabled = _env_flag("RATE_LIMITING_ENABLED")
    app.state.rate_limiting_enabled = rate_limiting_enabled
    app.state.redis_client = None

    if rate_limiting_enabled:
        log.info("Lifespan startup: Rate limiting is ENABLED. Attempting Redis connection...")
        try:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port = int(os.getenv("REDIS_PORT", 6379))
            redis_db = int(os.getenv("REDIS_DB", 0))
            red = redis.Redis(host=redis_host, port=redis_port, db=redis_db, decode_responses=True)
            await red.ping()
            await FastAPILimiter.init(red)
            app.state.redis_client = red
            log.info(f"Lifespan startup: Redis connected at {redis_host}:{redis_port}, FastAPILimiter initialized.")
        except Exception as e:
            log.error(f"Lifespan startup: Redis connection or FastAPILimiter initialization failed: {e}", exc_info=True)
            log.warning("Login endpoint will refuse requests while rate limiting is enabled without Redis.")
    else:
        log.info("Lifespan startup: Rate limiting is DISABLED.")

    # --- Cache Database ---
    app.state.database = None
    cache_store = None
    if _env_flag("CACHE_ENABLED", "true"):
        database_url = os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
        database = databases.Database(database_url)
        try:
            await database.connect()
            app.state.database = database
            cache_store = DatabaseCacheStore(database)
            # Schema is managed by Alembic (alembic upgrade head)
            log.info(f"Lifespan startup: Cache database connected ({database_url})")
        except Exception as e:
            log.error(f"Lifespan startup: Cache database connection failed, caching disabled: {e}", exc_info=True)
    else:
        log.warning("Lifespan startup: CACHE_ENABLED is false, caching disabled.")
    cache_gate = CacheGate(cache_store, max_age_hours=float(os.getenv("CACHE_MAX_AGE_HOURS", CACHE_MAX_AGE_HOURS)))

    # --- Browser Runtime ---
    app.state.playwright = None
    launcher = None
    try:
        app.state.playwright = await async_playwright().start()
        launcher = BrowserLauncher(
            app.state.playwright,
            executable_path=os.getenv("BROWSER_EXECUTABLE_PATH"),
            headless=_env_flag("BROWSER_HEADLESS", "true"),
        )
        log.info("Lifespan startup: Playwright driver started.")
    except Exception as e:
        log.error(f"Lifespan startup: Playwright driver failed to start: {e}", exc_info=True)

    # --- Sessions & Service ---
    sessions = SessionManager(
        idle_timeout=float(os.getenv("SESSION_IDLE_TIMEOUT_SECONDS", SESSION_IDLE_TIMEOUT_SECONDS)),
        sweep_interval=float(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", SESSION_SWEEP_INTERVAL_SECONDS)),
    )
    sessions.start_sweeper()
    app.state.sessions = sessions

    login_url = os.getenv("PORTAL_LOGIN_URL", PORTAL_LOGIN_URL)
    settle_seconds = float(os.getenv("SCHEDULE_SETTLE_SECONDS", SCHEDULE_SETTLE_SECONDS))
    app.state.planning_service = PlanningService(
        sessions=sessions,
        cache_gate=cache_gate,
        launcher=launcher,
        flow_factory=lambda page: AuthenticationFlow(page, login_url=login_url, settle_seconds=settle_seconds),
        save_debug_html=_env_flag("SAVE_DEBUG_HTML"),
    )

    log.info("Lifespan: Application startup sequence complete. Yielding control.")
    yield  # Application runs here
    log.info("Lifespan: Application shutdown sequence initiated.")

    # --- Shutdown Logic ---
    try:
        await sessions.close_all()
        log.info("Lifespan shutdown: All browser sessions closed.")
    except Exception as e:
        log.error(f"Lifespan shutdown: Error closing sessions: {e}", exc_info=True)

    if app.state.playwright is not None:
        try:
            await app.state.playwright.stop()
            log.info("Lifespan shutdown: Playwright driver stopped.")
        except Exception as e:
            log.error(f"Lifespan shutdown: Error stopping Playwright: {e}", exc_info=True)

    if app.state.database is not None:
        try:
            if app.state.database.is_connected:
                await app.state.database.disconnect()
                log.info("Lifespan shutdown: Database connection closed.")
        except Exception as e:
            log.error(f"Lifespan shutdown: Error disconnecting from database: {e}", exc_info=True)

    if app.state.redis_client is not None:
        try:
            await app.state.redis_client.close()
            log.info("Lifespan shutdown: Redis client closed.")
        except Exception as e:
            log.error(f"Lifespan shutdown: Error closing Redis client: {e}", exc_info=True)

    log.info("Lifespan: Application shutdown sequence complete.")


# --- Custom Dependency for Conditional Rate Limiting ---
def ConditionalRateLimiter(times: int, seconds: int):
    """
    Factory for a FastAPI dependency that applies rate limiting only if
    it's enabled in the application configuration (app.state.rate_limiting_enabled).
    """
    async def dependency(request: Request):
        if not getattr(request.app.state, 'rate_limiting_enabled', False):
            return
        if getattr(request.app.state, 'redis_client', None) is None:
            # Enabled in config but Redis failed during startup: cannot enforce limits
            log.warning(f"Blocking request to {request.url.path} because rate limiting is enabled but Redis is unavailable.")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Rate limiting service temporarily unavailable."
            )
        await RateLimiter(times=times, seconds=seconds)(request)

    return dependency


app = FastAPI(
    title="Planning API",
    description="Scrapes a student's schedule from the Aurion portal and serves it with a freshness-gated cache.",
    version="0.1.0",
    default_response_class=ORJSONResponse,
    lifespan=lifespan
)


# --- Error Shape: every failure is rendered as {"error": "..."} ---

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return ORJSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return ORJSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


def _service(request: Request) -> PlanningService:
    service: Optional[PlanningService] = getattr(request.app.state, "planning_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Core services are unavailable.")
    return service


@app.get("/")
async def read_root():
    """
    Root endpoint. Returns a simple message indicating the API is running.
    """
    return {"message": "Planning API is running"}


@app.post(
    "/api/login-and-fetch",
    response_model=LoginResponse,
    summary="Log in to the portal and fetch the schedule",
    tags=["Planning"],
    dependencies=[Depends(ConditionalRateLimiter(times=5, seconds=60))]
)
async def login_and_fetch(request: Request, body: LoginRequest):
    """
    Returns the cached schedule when fresh; otherwise logs in to the portal,
    extracts the schedule and keeps the browser session open for navigation.
    """
    if not body.username or not body.password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MSG_CREDENTIALS_REQUIRED)

    service = _service(request)
    try:
        result = await service.login_and_fetch(body.username, body.password)
    except AuthenticationFailed as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except MenuNotFound as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except Exception as e:
        log.error(f"[login] Error: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"{MSG_LOGIN_ERROR_PREFIX}{e}")

    return LoginResponse(
        token=result.token,
        events=result.events,
        from_cache=result.from_cache,
        cached_at=result.cached_at,
        message=result.message,
    )


@app.post(
    "/api/navigate",
    response_model=NavigateResponse,
    summary="Move the session's calendar to the next/previous/current period",
    tags=["Planning"]
)
async def navigate(request: Request, body: NavigateRequest):
    service = _service(request)
    try:
        events = await service.navigate(body.token, body.direction)
    except SessionNotFound:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=MSG_SESSION_EXPIRED)
    except Exception as e:
        log.error(f"[navigate] Error: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return NavigateResponse(events=events)


@app.post("/api/logout", response_model=MessageResponse, tags=["Planning"])
async def logout(request: Request, body: LogoutRequest):
    await _service(request).logout(body.token)
    return MessageResponse(message=MSG_LOGGED_OUT)


@app.post(
    "/api/cached-events",
    response_model=CachedEventsResponse,
    summary="Cached schedule without contacting the portal",
    tags=["Planning"]
)
async def cached_events(request: Request, body: CachedEventsRequest):
    if not body.username:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MSG_USERNAME_REQUIRED)
    cached = await _service(request).cached_events(body.username)
    return CachedEventsResponse(events=cached.events, cached_at=cached.cached_at, fresh=cached.fresh)


@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
async def health(request: Request):
    sessions: Optional[SessionManager] = getattr(request.app.state, "sessions", None)
    return HealthResponse(active_sessions=len(sessions) if sessions is not None else 0)
