"""Auth request/response schemas"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.user import UserResponse


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)
    device_name: Optional[str] = Field(None, max_length=255, description="Client-supplied label, e.g. 'iPhone 13'")


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)
    rotate: bool = Field(False, description="Replace the refresh token with a new one")


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int           # seconds until the access token expires
    refresh_expires_in: int   # seconds until the refresh token expires


class LoginResponse(TokenResponse):
    user: UserResponse


class ClaimsResponse(BaseModel):
    user_type: str
    roles: List[str]


class TokenInfo(BaseModel):
    jti: str
    issued_at: datetime
    expires_at: datetime
    expires_in: int


class ValidateResponse(BaseModel):
    valid: bool = True
    user_id: int
    claims: ClaimsResponse
    token_info: TokenInfo


class RevokeResponse(BaseModel):
    revoked: bool


class RevokeAllResponse(BaseModel):
    revoked_count: int


class SessionResponse(BaseModel):
    """One active device session. The refresh token itself is never returned."""
    id: int
    device_name: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    last_used_at: Optional[datetime] = None
    expires_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]
    total: int


class TokenStatsResponse(BaseModel):
    total_issued: int
    active_count: int
    expired_count: int
    revoked_count: int

    class Config:
        from_attributes = True
