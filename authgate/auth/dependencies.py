from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import sessionmaker
from typing import Optional, Sequence
import ipaddress

from ..config.settings import CHALLENGE_STORE_BACKEND, TRUSTED_PROXIES
from ..config.redis_config import get_redis_client
from ..core.logging import SecurityLogger
from ..core.time import Clock, utcnow
from ..services.challenge_store import ChallengeStore, RedisChallengeStore, SqlChallengeStore
from ..services.code_delivery import CodeDelivery, HttpEmailCodeDelivery
from ..services.ip_attempt_tracker import IpAttemptTracker
from ..services.token_manager import TokenManager
from .credentials import SqlCredentialRepository
from .mfa_service import MfaChallengeService
from .security import BcryptPasswordVerifier
from .service import AuthenticationService

# Security scheme
security = HTTPBearer()


def build_challenge_store(session_factory: sessionmaker, backend: str = CHALLENGE_STORE_BACKEND) -> ChallengeStore:
    """Pick the e-mail challenge backend named by configuration."""
    if backend == "redis":
        return RedisChallengeStore(get_redis_client())
    if backend == "sql":
        return SqlChallengeStore(session_factory)
    raise ValueError(f"Unknown challenge store backend: {backend}")


def build_authentication_service(
    session_factory: sessionmaker,
    code_delivery: Optional[CodeDelivery] = None,
    challenge_store: Optional[ChallengeStore] = None,
    clock: Clock = utcnow,
    logger: Optional[SecurityLogger] = None
) -> AuthenticationService:
    """Wire the authentication core against one database."""
    token_manager = TokenManager(session_factory, clock=clock, logger=logger)
    mfa_service = MfaChallengeService(
        session_factory,
        token_manager=token_manager,
        challenge_store=challenge_store or build_challenge_store(session_factory),
        code_delivery=code_delivery or HttpEmailCodeDelivery(logger=logger),
        clock=clock,
        logger=logger
    )
    return AuthenticationService(
        credential_lookup=SqlCredentialRepository(session_factory),
        password_verifier=BcryptPasswordVerifier(),
        attempt_tracker=IpAttemptTracker(session_factory, clock=clock, logger=logger),
        token_manager=token_manager,
        mfa_service=mfa_service,
        clock=clock,
        logger=logger
    )


def get_auth_service(request: Request) -> AuthenticationService:
    return request.app.state.auth_service


def is_trusted_proxy(host: str, trusted_proxies: Sequence[str]) -> bool:
    """Match ``host`` against proxy addresses and CIDR ranges."""
    if host in trusted_proxies:
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    for entry in trusted_proxies:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def get_client_ip(request: Request) -> str:
    """
    Client IP used as the lockout key.

    Forwarded headers are read only when the socket peer is a trusted proxy.
    """
    trusted_proxies = getattr(request.app.state, "trusted_proxies", TRUSTED_PROXIES)
    peer = request.client.host if request.client else "unknown"
    if not is_trusted_proxy(peer, trusted_proxies):
        return peer

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
        # Nearest hop that was not appended by one of our own proxies
        for hop in reversed(hops):
            if not is_trusted_proxy(hop, trusted_proxies):
                return hop
        if hops:
            return hops[0]

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return peer


def get_current_account_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    auth_service: AuthenticationService = Depends(get_auth_service)
) -> str:
    """Resolve the bearer token to an account id."""
    validation = auth_service.validate_token(credentials.credentials)
    if not validation.is_valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=validation.error.value if validation.error else "invalid_token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return validation.account_id
