from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from typing import Optional, Sequence

from .auth.dependencies import build_authentication_service
from .auth.results import AuthErrorKind
from .auth.router import router as auth_router
from .auth.service import AuthenticationService
from .config.redis_config import close_redis_connections, ping_redis
from .config.settings import CHALLENGE_STORE_BACKEND, TRUSTED_PROXIES
from .core.exceptions import StoreUnavailableError
from .core.logging import get_logger
from .database import SessionLocal, create_tables

logger = get_logger(__name__)


def create_app(
    auth_service: Optional[AuthenticationService] = None,
    init_db: bool = True,
    trusted_proxies: Optional[Sequence[str]] = None
) -> FastAPI:
    app = FastAPI(
        title="AuthGate API",
        description="Password login with IP lockout, TOTP and e-mailed one-time codes",
        version="1.0.0"
    )
    app.state.auth_service = auth_service or build_authentication_service(SessionLocal)
    app.state.trusted_proxies = TRUSTED_PROXIES if trusted_proxies is None else tuple(trusted_proxies)

    # Include routers
    app.include_router(auth_router)

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
        logger.error("Backing store unavailable", extra={"store": exc.store, "path": request.url.path})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": AuthErrorKind.STORE_UNAVAILABLE.value}
        )

    # Create database tables and test Redis connection on startup
    @app.on_event("startup")
    def startup_event():
        if init_db:
            create_tables()

        if CHALLENGE_STORE_BACKEND == "redis":
            if ping_redis():
                logger.info("Redis connection established")
            else:
                logger.warning("Redis connection failed")

    @app.on_event("shutdown")
    def shutdown_event():
        if CHALLENGE_STORE_BACKEND == "redis":
            close_redis_connections()

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "authgate"}

    return app


app = create_app()
