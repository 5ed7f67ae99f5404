"""Authentication request/response Pydantic schemas."""
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime


class LoginRequest(BaseModel):
    """Password step of the login protocol."""
    email: str = Field(..., min_length=1, max_length=320, description="Account identifier (e-mail)")
    password: str = Field(..., min_length=1, description="Plaintext password")


class CodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=8, description="Numeric one-time code")

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        """Validate code format."""
        v = v.strip()
        if not v.isdigit():
            raise ValueError('Code must contain only digits')
        return v


class SecondFactorRequest(CodeRequest):
    account_ref: str = Field(..., description="Ticket returned by the password step")


class ThirdFactorRequest(CodeRequest):
    challenge_id: str = Field(..., description="Challenge id returned by the password step")


class ResendRequest(BaseModel):
    challenge_id: str


class TokenResponse(BaseModel):
    status: str = "success"
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "status": "success",
                "access_token": "3q2-7wEAAQ...",
                "token_type": "bearer",
                "expires_at": "2026-01-01T12:00:00Z"
            }
        }


class SecondFactorRequiredResponse(BaseModel):
    status: str = "need_second_factor"
    account_ref: str


class ThirdFactorRequiredResponse(BaseModel):
    status: str = "need_third_factor"
    challenge_id: str


class ErrorResponse(BaseModel):
    error: str
    retry_after: Optional[int] = None
    permanent: Optional[bool] = None


class EnrollmentResponse(BaseModel):
    provisioning_uri: str
    qr_code_url: str = "/auth/mfa/totp/qr-code"


class CurrentAccountResponse(BaseModel):
    account_id: str
    email: Optional[str] = None
    role: Optional[str] = None
    display_name: Optional[str] = None
