"""Authentication router: login steps, logout and TOTP enrolment."""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials
from typing import Dict, Optional
import io

from ..core.exceptions import AccountNotFoundError, SecondFactorAlreadyEnabledError
from .dependencies import get_auth_service, get_client_ip, get_current_account_id, security
from .results import (
    AuthErrorKind,
    AuthFailure,
    IssuedToken,
    LoginOutcome,
    RateLimited,
)
from .schemas import (
    CodeRequest,
    CurrentAccountResponse,
    EnrollmentResponse,
    LoginRequest,
    ResendRequest,
    SecondFactorRequest,
    SecondFactorRequiredResponse,
    ThirdFactorRequest,
    ThirdFactorRequiredResponse,
    TokenResponse,
)
from .service import AuthenticationService

router = APIRouter(prefix="/auth", tags=["authentication"])

ERROR_STATUS: Dict[AuthErrorKind, int] = {
    AuthErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    AuthErrorKind.CHALLENGE_MISMATCH: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.CHALLENGE_EXPIRED: status.HTTP_410_GONE,
    AuthErrorKind.CHALLENGE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorKind.TOKEN_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.TOKEN_NOT_FOUND: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.SECOND_FACTOR_NOT_ENROLLED: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(kind: AuthErrorKind, retry_after: Optional[int] = None, permanent: Optional[bool] = None) -> JSONResponse:
    content = {"error": kind.value}
    headers = {}
    if kind == AuthErrorKind.RATE_LIMITED:
        content["retry_after"] = retry_after
        content["permanent"] = bool(permanent)
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=ERROR_STATUS[kind], content=content, headers=headers or None)


def token_response(token: IssuedToken) -> TokenResponse:
    return TokenResponse(access_token=token.token, expires_at=token.expires_at)


def factor_response(result):
    if isinstance(result, AuthFailure):
        return error_response(result.kind)
    return token_response(result)


@router.post("/login", responses={202: {}, 401: {}, 429: {}})
def login(
    login_data: LoginRequest,
    request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """
    Password step of the login protocol.

    - 200 with a session token when no extra factor is enabled
    - 202 with ``account_ref`` when a TOTP code is required next
    - 202 with ``challenge_id`` when an e-mailed code is required next
    - 401 on bad credentials, 429 while the client IP is blocked
    """
    result = auth_service.login(login_data.email, login_data.password, get_client_ip(request))

    if result.outcome == LoginOutcome.SUCCESS:
        return token_response(result.token)

    if result.outcome == LoginOutcome.NEED_SECOND_FACTOR:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=SecondFactorRequiredResponse(account_ref=result.account_ref).model_dump()
        )

    if result.outcome == LoginOutcome.NEED_THIRD_FACTOR:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=ThirdFactorRequiredResponse(challenge_id=result.challenge_id).model_dump()
        )

    if isinstance(result, RateLimited):
        return error_response(result.kind, result.retry_after, result.permanent)

    return error_response(result.kind)


@router.post("/login/second-factor", response_model=TokenResponse)
def login_second_factor(
    factor_data: SecondFactorRequest,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Complete a login with a code from the authenticator app."""
    return factor_response(auth_service.verify_second_factor(factor_data.account_ref, factor_data.code))


@router.post("/login/third-factor", response_model=TokenResponse)
def login_third_factor(
    factor_data: ThirdFactorRequest,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Complete a login with the code sent by e-mail."""
    return factor_response(auth_service.verify_third_factor(factor_data.challenge_id, factor_data.code))


@router.post("/login/third-factor/resend", status_code=status.HTTP_202_ACCEPTED)
def resend_third_factor(
    resend_data: ResendRequest,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    failure = auth_service.resend_third_factor(resend_data.challenge_id)
    if failure is not None:
        return error_response(failure.kind)
    return {"message": "Code sent"}


@router.post("/logout")
def logout(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Revoke the presented token. Unknown tokens are accepted silently."""
    auth_service.logout(credentials.credentials)
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=CurrentAccountResponse)
def get_current_account(
    account_id: str = Depends(get_current_account_id),
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    identity = auth_service.current_identity(account_id)
    if identity is None:
        return CurrentAccountResponse(account_id=account_id)
    return CurrentAccountResponse(
        account_id=identity.account_id,
        email=identity.email,
        role=identity.role.value,
        display_name=identity.display_name
    )


@router.post("/mfa/totp/enroll", response_model=EnrollmentResponse)
def enroll_totp(
    account_id: str = Depends(get_current_account_id),
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """
    Start TOTP enrolment for the current account.

    The secret stays inactive until a code is confirmed via
    ``/auth/mfa/totp/confirm``.
    """
    try:
        provisioning_uri = auth_service.enroll_second_factor(account_id)
    except SecondFactorAlreadyEnabledError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except AccountNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return EnrollmentResponse(provisioning_uri=provisioning_uri)


@router.get("/mfa/totp/qr-code")
def get_qr_code(
    account_id: str = Depends(get_current_account_id),
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """PNG QR code for authenticator apps."""
    qr_code_data = auth_service.mfa_service.generate_qr_code(account_id)
    if qr_code_data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="TOTP is not enrolled")

    return StreamingResponse(
        io.BytesIO(qr_code_data),
        media_type="image/png",
        headers={"Content-Disposition": "inline; filename=totp_qr_code.png"}
    )


@router.post("/mfa/totp/confirm")
def confirm_totp(
    code_data: CodeRequest,
    account_id: str = Depends(get_current_account_id),
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    if not auth_service.confirm_second_factor(account_id, code_data.code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")
    return {"enabled": True}
