"""Pydantic schemas for request/response validation"""
from app.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    RefreshRequest,
    RevokeAllResponse,
    RevokeResponse,
    SessionListResponse,
    SessionResponse,
    TokenResponse,
    TokenStatsResponse,
    ValidateResponse,
)
from app.schemas.user import UserResponse

__all__ = [
    "LoginRequest",
    "LoginResponse",
    "LogoutRequest",
    "RefreshRequest",
    "RevokeAllResponse",
    "RevokeResponse",
    "SessionListResponse",
    "SessionResponse",
    "TokenResponse",
    "TokenStatsResponse",
    "UserResponse",
    "ValidateResponse",
]
