# admingate/main.py
"""
FastAPI application guarding the admin dashboard's protected views.

Every request to ``/admin/...`` passes the navigation gate first. Granted
requests get a rotated CSRF cookie; denied requests get their cookies
cleared and a redirect to the login page carrying the requested location.
"""

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from typing import Optional, Tuple
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import asyncio
import logging
import secrets

from admingate.core.config import Settings, settings as default_settings, validate_required_settings
from admingate.core.exceptions import GateBaseException, GateDeniedError
from admingate.core.logging_config import setup_logging
from admingate.core.rate_limit_config import get_real_ip, RATE_LIMITS, RATE_LIMIT_MESSAGE
from admingate.core.security import CookieClientStorage, NavigationGate, build_gate, compute_device_fingerprint
from admingate.middleware.security_middleware import SecurityHeadersMiddleware
from admingate.models.security_models import (
    GateDecision,
    SessionBootstrapRequest,
    SessionBootstrapResponse,
)
from admingate.services.redis_service import RedisService, create_redis_service

logger = logging.getLogger(__name__)

API_KEY_NAME = "X-API-Key"
CSRF_HEADER_NAME = "X-CSRF-Token"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


def get_api_key(app_settings: Settings) -> str:
    """Get API key from settings or generate one for development"""
    api_key = app_settings.ADMINGATE_API_KEY
    if not api_key:
        api_key = secrets.token_urlsafe(32)
        logger.warning("⚠️ No ADMINGATE_API_KEY set. Generated temporary key.")
        logger.warning("⚠️ Set ADMINGATE_API_KEY environment variable for production!")
    else:
        logger.info("✅ API Key configured from environment")
    return api_key


def get_safe_error_message(error: Exception, context: str = "") -> str:
    """Return a safe error message that doesn't expose internal details"""
    logger.error(f"Error in {context}: {type(error).__name__}: {str(error)}")

    if isinstance(error, HTTPException):
        return error.detail

    error_messages = {
        "ConnectionError": "Connection error. Please try again later.",
        "TimeoutError": "The request took too long. Please try again.",
        "ValueError": "The request was invalid.",
    }
    return error_messages.get(type(error).__name__, "An error occurred. Please try again later.")


def get_gate(request: Request) -> NavigationGate:
    gate = getattr(request.app.state, "gate", None)
    if gate is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return gate


async def verify_api_key(request: Request, api_key: Optional[str] = Depends(api_key_header)) -> str:
    """Verify API key for internal endpoints"""
    if api_key is None:
        logger.warning("❌ Request without API key")
        raise HTTPException(
            status_code=401,
            detail="Missing API Key. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    if not secrets.compare_digest(api_key.encode(), request.app.state.api_key.encode()):
        logger.warning("❌ Invalid API key attempt detected")
        raise HTTPException(
            status_code=401,
            detail="Invalid API Key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return api_key


def _storage_for(request: Request) -> CookieClientStorage:
    app_settings: Settings = request.app.state.settings
    return CookieClientStorage(request, secure=app_settings.COOKIE_SECURE)


async def require_gate(
    request: Request,
    gate: NavigationGate = Depends(get_gate)
) -> Tuple[GateDecision, CookieClientStorage]:
    """Run the navigation gate for the current request"""
    storage = _storage_for(request)
    location = request.url.path
    if request.url.query:
        location = f"{location}?{request.url.query}"

    decision = await gate.check(storage, location)
    if not decision.granted:
        raise GateDeniedError(decision, storage)
    return decision, storage


def gate_denied_handler(request: Request, exc: GateDeniedError):
    """Denied navigations redirect to login, transient failures ask for a retry"""
    decision: GateDecision = exc.decision
    if decision.retryable:
        response = JSONResponse(
            status_code=503,
            content={
                "detail": "Security check temporarily unavailable. Please try again.",
                "redirect_to": decision.redirect_to,
            },
            headers={"Retry-After": "5"},
        )
    else:
        response = RedirectResponse(url=decision.redirect_to, status_code=303)
    return exc.storage.apply(response)


def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Rate limit response with helpful message"""
    response = PlainTextResponse(content=RATE_LIMIT_MESSAGE, status_code=429)
    response.headers["Retry-After"] = "60"
    return response


async def run_maintenance(gate: NavigationGate, interval: float) -> None:
    """Periodically drop expired sessions and CSRF tokens"""
    while True:
        await asyncio.sleep(interval)
        try:
            sessions = await gate.sessions.cleanup_expired()
            tokens = await gate.csrf.clear_expired()
            logger.debug(f"🧹 Maintenance removed {sessions} sessions, {tokens} tokens")
        except Exception:
            logger.error("Maintenance run failed", exc_info=True)


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the application for the given settings"""
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"🚀 {app_settings.APP_NAME} starting...")

        validate_required_settings(app_settings)

        redis_service: Optional[RedisService] = None
        if app_settings.REDIS_URL:
            redis_service = await create_redis_service(app_settings.REDIS_URL)
            if not redis_service.is_connected():
                logger.warning("⚠️ Redis unreachable - using in-memory security stores")

        app.state.redis = redis_service
        app.state.gate = build_gate(app_settings, redis_service)
        maintenance = asyncio.create_task(
            run_maintenance(app.state.gate, app_settings.MAINTENANCE_INTERVAL_SECONDS)
        )

        logger.info(f"📋 Session backend: {app.state.gate.sessions.__class__.__name__}")
        logger.info(f"📋 CSRF backend: {app.state.gate.csrf.__class__.__name__}")
        logger.info("✅ Gate ready")
        logger.info("=" * 60)

        yield

        logger.info("🛑 Shutting down...")
        maintenance.cancel()
        try:
            await maintenance
        except asyncio.CancelledError:
            pass
        if redis_service is not None:
            await redis_service.shutdown()
        app.state.gate = None

    app = FastAPI(
        title=f"{app_settings.APP_NAME} API",
        description="Route-entry security gate for the admin dashboard",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None
    )
    app.state.settings = app_settings
    app.state.api_key = get_api_key(app_settings)
    app.state.gate = None

    limiter = Limiter(key_func=get_real_ip)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)
    app.add_exception_handler(GateDeniedError, gate_denied_handler)

    app.middleware("http")(SecurityHeadersMiddleware())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", API_KEY_NAME, CSRF_HEADER_NAME],
        expose_headers=[CSRF_HEADER_NAME],
    )

    @app.get("/", status_code=200)
    def read_root():
        return {"status": "ok", "version": "1.0.0", "service": "admingate"}

    @app.get("/health", status_code=200)
    def health():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/healthz", response_class=PlainTextResponse, status_code=200)
    def healthz():
        return "OK"

    @app.get("/ready")
    def ready(request: Request):
        is_ready = request.app.state.gate is not None
        return JSONResponse(status_code=200 if is_ready else 503, content={"ready": is_ready})

    @app.get("/alive", status_code=200)
    def alive():
        return {"alive": True}

    @app.get("/health/security", dependencies=[Depends(verify_api_key)])
    async def security_health(request: Request, gate: NavigationGate = Depends(get_gate)):
        """Gate outcome counters and backend status"""
        redis_service = request.app.state.redis
        return {
            "gate": gate.get_metrics(),
            "redis": await redis_service.health_check() if redis_service else {"status": "disabled"},
        }

    @app.post(
        "/internal/sessions",
        response_model=SessionBootstrapResponse,
        dependencies=[Depends(verify_api_key)]
    )
    @limiter.limit(RATE_LIMITS["session_bootstrap"])
    async def bootstrap_session(
        request: Request,
        body: SessionBootstrapRequest,
        gate: NavigationGate = Depends(get_gate)
    ):
        """
        Called by the login service once a user has authenticated.

        Creates the device-bound session and the first CSRF token, and
        writes all four client-held identifiers as cookies.
        """
        try:
            fingerprint = compute_device_fingerprint(request.headers)
            session = await gate.sessions.create(body.user_id, fingerprint)
            token = await gate.csrf.issue(body.user_id)
        except Exception as e:
            logger.error(f"Error in bootstrap_session: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=get_safe_error_message(e, "bootstrap_session"))

        storage = _storage_for(request)
        storage.set(app_settings.SESSION_ID_KEY, session.session_id)
        storage.set(app_settings.USER_ID_KEY, session.user_id)
        storage.set(app_settings.DEVICE_FINGERPRINT_KEY, fingerprint)
        storage.set(app_settings.CSRF_TOKEN_KEY, token)

        payload = SessionBootstrapResponse(
            session_id=session.session_id,
            user_id=session.user_id,
            csrf_token=token,
            expires_at=session.expires_at,
        )
        response = JSONResponse(content=payload.model_dump(mode="json"))
        response.headers[CSRF_HEADER_NAME] = token
        return storage.apply(response)

    @app.post("/logout")
    @limiter.limit(RATE_LIMITS["logout"])
    async def logout(request: Request, gate: NavigationGate = Depends(get_gate)):
        """Destroy the session and CSRF token when the cookies prove ownership"""
        storage = _storage_for(request)
        credentials = gate.read_credentials(storage)

        if not credentials.missing_fields():
            try:
                session = await gate.sessions.resolve(credentials.session_id, credentials.device_fingerprint)
                if session and session.user_id == credentials.user_id \
                        and await gate.csrf.validate(session.user_id, credentials.csrf_token):
                    await gate.sessions.destroy(session.session_id)
                    await gate.csrf.revoke(session.user_id)
                    logger.info(f"👋 User {session.user_id} logged out")
            except GateBaseException:
                # Cookies are cleared regardless; the session expires on its own
                logger.error(f"Server-side logout failed for session {credentials.session_id[:8]}...", exc_info=True)

        storage.remove_all(app_settings.storage_keys)
        return storage.apply(JSONResponse(content={"status": "logged_out"}))

    @app.get("/admin/{view_path:path}")
    @limiter.limit(RATE_LIMITS["protected_view"])
    async def protected_view(
        request: Request,
        view_path: str,
        gate_result: Tuple[GateDecision, CookieClientStorage] = Depends(require_gate)
    ):
        """Serve a protected admin view once the gate has granted access"""
        decision, storage = gate_result
        response = JSONResponse(content={
            "view": view_path or "dashboard",
            "user_id": decision.user_id,
        })
        response.headers[CSRF_HEADER_NAME] = decision.csrf_token
        return storage.apply(response)

    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info(f"🚀 Starting server on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
