"""Admin session management endpoints"""
from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import Identity, get_token_manager, get_user_store, require_role
from app.models.user import User
from app.schemas.auth import (
    RevokeAllResponse,
    SessionListResponse,
    SessionResponse,
    TokenStatsResponse,
)
from app.services.token_service import TokenSessionManager
from app.services.user_store import UserStore
from app.utils.logger import logger

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_user_or_404(user_id: int, user_store: UserStore) -> User:
    user = user_store.get_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return user


# ---------------------------------------------------------------------------
# Per-user session control (admin only)
# ---------------------------------------------------------------------------

@router.post("/users/{user_id}/revoke-sessions", response_model=RevokeAllResponse)
def revoke_user_sessions(
    user_id: int,
    identity: Identity = Depends(require_role("admin")),
    user_store: UserStore = Depends(get_user_store),
    tokens: TokenSessionManager = Depends(get_token_manager),
):
    """
    Sign a user out of every device (admin only).

    Access tokens already handed out stay valid until they expire; the user
    cannot refresh them.
    """
    user = _get_user_or_404(user_id, user_store)
    count = tokens.revoke_all(user.id)

    logger.info(
        f"Admin {identity.user_id} revoked {count} session(s) of user {user.id}",
        extra={"user_id": identity.user_id, "action": "admin_revoke_sessions"},
    )
    return RevokeAllResponse(revoked_count=count)


@router.get("/users/{user_id}/sessions", response_model=SessionListResponse)
def list_user_sessions(
    user_id: int,
    _: Identity = Depends(require_role("admin")),
    user_store: UserStore = Depends(get_user_store),
    tokens: TokenSessionManager = Depends(get_token_manager),
):
    """List a user's active sessions (admin only)."""
    user = _get_user_or_404(user_id, user_store)
    active = [SessionResponse(**info._asdict()) for info in tokens.list_active_sessions(user.id)]
    return SessionListResponse(sessions=active, total=len(active))


@router.get("/users/{user_id}/token-stats", response_model=TokenStatsResponse)
def user_token_stats(
    user_id: int,
    _: Identity = Depends(require_role("admin")),
    user_store: UserStore = Depends(get_user_store),
    tokens: TokenSessionManager = Depends(get_token_manager),
):
    """Refresh token counts for a user (admin only)."""
    user = _get_user_or_404(user_id, user_store)
    return TokenStatsResponse(**tokens.stats(user.id)._asdict())
