"""API dependencies for authentication and authorization.

Everything the auth core needs (signing key, clock, DB session, user store)
is wired here and injected into the services; nothing reaches for a global
at call time, so tests can override any piece with
``app.dependency_overrides``.

Identity resolution
-------------------
:class:`IdentityResolver` looks for an access token in, in priority order:
  1. the ``token`` query parameter
  2. a ``token`` field in a JSON request body
  3. ``Authorization: Bearer <token>``

The first non-empty value wins. Any verification failure resolves to
anonymous (``None``); endpoints that need a caller use
:func:`require_identity` or :func:`require_role`.
"""
import json
from typing import Callable, NamedTuple, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.errors import AuthError, AuthErrorKind, TokenError
from app.middleware.monitoring import record_auth_failure
from app.models.user import User
from app.services.auth_service import AuthService
from app.services.token_service import TokenSessionManager
from app.services.user_store import UserStore
from app.utils.clock import Clock, utcnow
from app.utils.jwt_utils import AccessTokenCodec, Claims
from app.utils.logger import logger


class Identity(NamedTuple):
    """The acting user, as proven by a verified access token."""
    user_id: int
    claims: Claims


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

def get_clock() -> Clock:
    return utcnow


def get_codec(clock: Clock = Depends(get_clock)) -> AccessTokenCodec:
    return AccessTokenCodec(
        secret_key=settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
        ttl_seconds=settings.access_token_ttl_seconds,
        clock=clock,
    )


def get_user_store(db: Session = Depends(get_db)) -> UserStore:
    return UserStore(db)


def get_token_manager(
    db: Session = Depends(get_db),
    codec: AccessTokenCodec = Depends(get_codec),
    user_store: UserStore = Depends(get_user_store),
    clock: Clock = Depends(get_clock),
) -> TokenSessionManager:
    return TokenSessionManager(
        db=db,
        codec=codec,
        user_store=user_store,
        refresh_ttl_days=settings.REFRESH_TOKEN_TTL_DAYS,
        clock=clock,
    )


def get_auth_service(
    user_store: UserStore = Depends(get_user_store),
    tokens: TokenSessionManager = Depends(get_token_manager),
) -> AuthService:
    return AuthService(
        user_store=user_store,
        tokens=tokens,
        max_attempts=settings.LOGIN_MAX_ATTEMPTS,
        lockout_minutes=settings.LOGIN_LOCKOUT_MINUTES,
    )


# ---------------------------------------------------------------------------
# Request-bound identity
# ---------------------------------------------------------------------------

def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credentials.strip() or None


async def _body_token(request: Request) -> Optional[str]:
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if isinstance(payload, dict):
        value = payload.get("token")
        if isinstance(value, str) and value:
            return value
    return None


class IdentityResolver:
    """Resolves the caller of one request; the result is cached on the instance."""

    def __init__(self, request: Request, codec: AccessTokenCodec):
        self.request = request
        self.codec = codec
        self._resolved = False
        self._identity: Optional[Identity] = None

    async def token_for_request(self) -> Optional[str]:
        token = self.request.query_params.get("token")
        if not token:
            token = await _body_token(self.request)
        if not token:
            token = _bearer_token(self.request)
        return token or None

    async def resolve(self) -> Optional[Identity]:
        if self._resolved:
            return self._identity

        token = await self.token_for_request()
        if token:
            try:
                verified = self.codec.verify(token)
                self._identity = Identity(user_id=verified.user_id, claims=verified.claims)
            except TokenError as exc:
                record_auth_failure(exc.kind.value)
                logger.info(
                    f"Access token rejected: {exc.message}",
                    extra={
                        "error_kind": exc.kind.value,
                        "request_id": getattr(self.request.state, "request_id", None),
                    },
                )
                self._identity = None

        self._resolved = True
        return self._identity


def get_identity_resolver(
    request: Request,
    codec: AccessTokenCodec = Depends(get_codec),
) -> IdentityResolver:
    return IdentityResolver(request, codec)


async def get_identity(
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Optional[Identity]:
    """Optional identity: ``None`` for anonymous callers."""
    return await resolver.resolve()


def require_identity(identity: Optional[Identity] = Depends(get_identity)) -> Identity:
    """Require an authenticated caller (401 otherwise)."""
    if identity is None:
        raise AuthError(AuthErrorKind.AUTHENTICATION_REQUIRED)
    return identity


def require_role(role: str) -> Callable:
    """Return a FastAPI dependency that requires ``role`` in the token claims.

    Usage::

        @router.post("/sensitive")
        def endpoint(identity: Identity = Depends(require_role("admin"))):
            ...
    """

    def _role_dep(identity: Identity = Depends(require_identity)) -> Identity:
        if not identity.claims.has_role(role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{role}' required",
            )
        return identity

    # Give FastAPI a unique name so it doesn't collapse distinct dependencies
    _role_dep.__name__ = f"require_role_{role}"
    return _role_dep


def get_current_user(
    identity: Identity = Depends(require_identity),
    user_store: UserStore = Depends(get_user_store),
) -> User:
    """Load the caller's user row; 401 if it no longer exists or is inactive."""
    user = user_store.get_by_id(identity.user_id)
    if user is None:
        raise AuthError(AuthErrorKind.AUTHENTICATION_REQUIRED, "User not found")
    if not user.is_active:
        raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE)
    return user
