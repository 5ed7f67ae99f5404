from .results import (
    AuthErrorKind,
    AuthFailure,
    InvalidCredentials,
    IssuedToken,
    LoginOutcome,
    LoginSuccess,
    RateLimited,
    SecondFactorRequired,
    ThirdFactorRequired,
    TokenValidation,
)

__all__ = [
    "AuthErrorKind",
    "AuthFailure",
    "InvalidCredentials",
    "IssuedToken",
    "LoginOutcome",
    "LoginSuccess",
    "RateLimited",
    "SecondFactorRequired",
    "ThirdFactorRequired",
    "TokenValidation",
]
