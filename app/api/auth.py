"""Login, refresh, validation, logout and session endpoints"""
from fastapi import APIRouter, Depends, Request

from app.api.deps import (
    Identity,
    get_auth_service,
    get_codec,
    get_current_user,
    get_token_manager,
    require_identity,
)
from app.errors import AuthError, AuthErrorKind
from app.middleware.rate_limit import get_rate_limit, limiter
from app.models.user import User
from app.schemas.auth import (
    ClaimsResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    RefreshRequest,
    RevokeAllResponse,
    RevokeResponse,
    SessionListResponse,
    SessionResponse,
    TokenInfo,
    TokenResponse,
    TokenStatsResponse,
    ValidateResponse,
)
from app.schemas.user import UserResponse
from app.services.auth_service import AuthService
from app.services.token_service import TokenPair, TokenSessionManager
from app.utils.jwt_utils import AccessTokenCodec

router = APIRouter(prefix="/auth", tags=["authentication"])


def _client_ip(request: Request):
    return request.client.host if request.client else None


def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token.token,
        expires_in=pair.expires_in,
        refresh_expires_in=pair.refresh_expires_in,
    )


# ---------------------------------------------------------------------------
# POST /auth/login
# ---------------------------------------------------------------------------

@router.post("/login", response_model=LoginResponse)
@limiter.limit(get_rate_limit("login"))
def login(
    request: Request,
    payload: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Exchange e-mail + password for an access/refresh token pair.

    Each successful login opens a new device session labelled with
    ``device_name``; the client IP and user agent are recorded with it.
    """
    user, pair = auth.login(
        email=payload.email,
        password=payload.password,
        device_name=payload.device_name,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return LoginResponse(
        **_token_response(pair).model_dump(),
        user=UserResponse.model_validate(user),
    )


# ---------------------------------------------------------------------------
# POST /auth/refresh-token
# ---------------------------------------------------------------------------

@router.post("/refresh-token", response_model=TokenResponse)
@limiter.limit(get_rate_limit("refresh"))
def refresh_token(
    request: Request,
    payload: RefreshRequest,
    tokens: TokenSessionManager = Depends(get_token_manager),
) -> TokenResponse:
    """Mint a new access token from a refresh token.

    With ``rotate=true`` the submitted refresh token is revoked and a new one
    is returned; otherwise the same refresh token comes back.
    """
    pair = tokens.refresh(
        payload.refresh_token,
        rotate=payload.rotate,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return _token_response(pair)


# ---------------------------------------------------------------------------
# POST /auth/validate
# ---------------------------------------------------------------------------

@router.post("/validate", response_model=ValidateResponse)
def validate_token(
    request: Request,
    codec: AccessTokenCodec = Depends(get_codec),
) -> ValidateResponse:
    """Verify the access token in ``Authorization: Bearer <token>``."""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError(AuthErrorKind.AUTHENTICATION_REQUIRED, "No token provided")

    verified = codec.verify(token.strip())
    return ValidateResponse(
        user_id=verified.user_id,
        claims=ClaimsResponse(user_type=verified.claims.user_type, roles=list(verified.claims.roles)),
        token_info=TokenInfo(
            jti=verified.jti,
            issued_at=verified.issued_at,
            expires_at=verified.expires_at,
            expires_in=codec.remaining_seconds(verified),
        ),
    )


# ---------------------------------------------------------------------------
# Authenticated session management
# ---------------------------------------------------------------------------

@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    """Return the caller's profile."""
    return user


@router.post("/logout", response_model=RevokeResponse)
def logout(
    payload: LogoutRequest,
    identity: Identity = Depends(require_identity),
    tokens: TokenSessionManager = Depends(get_token_manager),
) -> RevokeResponse:
    """Log out of the current device by revoking its refresh token.

    Revoking an already-revoked token succeeds. The token must belong to the
    caller.
    """
    tokens.revoke(payload.refresh_token, user_id=identity.user_id)
    return RevokeResponse(revoked=True)


@router.post("/logout-all", response_model=RevokeAllResponse)
def logout_all(
    identity: Identity = Depends(require_identity),
    tokens: TokenSessionManager = Depends(get_token_manager),
) -> RevokeAllResponse:
    """Log out of every device by revoking all of the caller's refresh tokens."""
    return RevokeAllResponse(revoked_count=tokens.revoke_all(identity.user_id))


@router.get("/sessions", response_model=SessionListResponse)
def sessions(
    identity: Identity = Depends(require_identity),
    tokens: TokenSessionManager = Depends(get_token_manager),
) -> SessionListResponse:
    """List the caller's active sessions, most recently used first."""
    active = [SessionResponse(**info._asdict()) for info in tokens.list_active_sessions(identity.user_id)]
    return SessionListResponse(sessions=active, total=len(active))


@router.get("/token-stats", response_model=TokenStatsResponse)
def token_stats(
    identity: Identity = Depends(require_identity),
    tokens: TokenSessionManager = Depends(get_token_manager),
) -> TokenStatsResponse:
    """Counts of issued, active, expired and revoked refresh tokens."""
    return TokenStatsResponse(**tokens.stats(identity.user_id)._asdict())
