"""Refresh token lifecycle: issue, refresh (with optional rotation), revoke, sessions.

This manager is the only writer of the ``refresh_tokens`` table and the sole
source of truth for whether a session is still alive. Access tokens are
minted through :class:`~app.utils.jwt_utils.AccessTokenCodec`.
"""
import secrets
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, List, NamedTuple, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from app.database import storage_guard
from app.errors import TokenError, TokenErrorKind
from app.middleware.monitoring import record_token_event
from app.models.refresh_token import RefreshToken
from app.models.user import User
from app.services.user_store import UserStore
from app.utils.clock import Clock, utcnow
from app.utils.jwt_utils import AccessTokenCodec, Claims
from app.utils.logger import logger

UNKNOWN_DEVICE = "Unknown Device"


def generate_refresh_token() -> str:
    """64 url-safe characters, 384 bits of entropy"""
    return secrets.token_urlsafe(48)


class TokenPair(NamedTuple):
    access_token: str
    refresh_token: RefreshToken
    expires_in: int           # access token lifetime, seconds
    refresh_expires_in: int   # refresh token lifetime, seconds
    rotated: bool = False


class SessionInfo(NamedTuple):
    id: int
    device_name: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    last_used_at: Optional[datetime]
    expires_at: datetime
    created_at: datetime


class TokenStats(NamedTuple):
    total_issued: int
    active_count: int
    expired_count: int
    revoked_count: int


class TokenSessionManager:
    """Issue, validate, rotate and revoke refresh tokens for one DB session."""

    def __init__(
        self,
        db: Session,
        codec: AccessTokenCodec,
        user_store: UserStore,
        refresh_ttl_days: int = 30,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.codec = codec
        self.user_store = user_store
        self.refresh_ttl = timedelta(days=refresh_ttl_days)
        self.clock = clock or utcnow

    @property
    def refresh_ttl_seconds(self) -> int:
        return int(self.refresh_ttl.total_seconds())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, action: str) -> Iterator[None]:
        """Roll back on any failure; surface persistence errors as StorageUnavailable."""
        with storage_guard(self.db, action):
            try:
                yield
            except TokenError:
                self.db.rollback()
                raise

    def _find(self, token: str) -> Optional[RefreshToken]:
        return self.db.query(RefreshToken).filter(RefreshToken.token == token).first()

    def _ensure_usable(self, record: Optional[RefreshToken], now: datetime) -> RefreshToken:
        if record is None:
            raise TokenError(TokenErrorKind.NOT_FOUND)
        if record.is_revoked:
            raise TokenError(TokenErrorKind.REVOKED)
        if record.is_expired(now):
            raise TokenError(TokenErrorKind.EXPIRED, "Refresh token has expired")
        return record

    def _claim(self, record: RefreshToken, values: dict) -> None:
        """Conditionally update a still-unrevoked row.

        The ``revoked_at IS NULL`` guard makes the write the serialization
        point between concurrent refreshes of the same token: only one of
        them sees a row count of 1.
        """
        updated = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.id == record.id, RefreshToken.revoked_at.is_(None))
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            raise TokenError(TokenErrorKind.REVOKED)

    def _build(
        self,
        user_id: int,
        now: datetime,
        device_name: Optional[str],
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> RefreshToken:
        return RefreshToken(
            user_id=user_id,
            token=generate_refresh_token(),
            device_name=device_name,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=now + self.refresh_ttl,
            last_used_at=now,
            created_at=now,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(
        self,
        user_id: int,
        device_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshToken:
        """Persist and return a brand-new refresh token for ``user_id``."""
        with self._transaction("issue"):
            record = self._build(user_id, self.clock(), device_name, ip_address, user_agent)
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)

        record_token_event("issued")
        logger.info(
            f"Issued refresh token for user {user_id}",
            extra={"user_id": user_id, "token_id": record.id, "device_name": device_name, "action": "issue"},
        )
        return record

    def generate_tokens(
        self,
        user: User,
        device_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenPair:
        """Access token + fresh refresh token, as handed out at login."""
        refresh_token = self.issue(user.id, device_name, ip_address, user_agent)
        access_token = self.codec.issue(user.id, Claims.for_user(user))
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.codec.ttl_seconds,
            refresh_expires_in=self.refresh_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(
        self,
        token: str,
        rotate: bool = False,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenPair:
        """Mint a new access token from a refresh token, optionally rotating it.

        Claims are rebuilt from the current user row, so role changes apply
        on the next refresh. With ``rotate`` the old row is revoked and its
        replacement inserted in the same transaction; without it only
        ``last_used_at`` moves and the same token string comes back.

        Raises:
            TokenError: NOT_FOUND, REVOKED, EXPIRED or ACCOUNT_INACTIVE.
            StorageUnavailable: the table could not be read or written.
        """
        with self._transaction("refresh"):
            now = self.clock()
            record = self._ensure_usable(self._find(token), now)

            user = self.user_store.get_by_id(record.user_id)
            if user is None:
                raise TokenError(TokenErrorKind.NOT_FOUND, "User not found")
            if not user.is_active:
                raise TokenError(TokenErrorKind.ACCOUNT_INACTIVE)

            access_token = self.codec.issue(user.id, Claims.for_user(user))

            if rotate:
                self._claim(record, {"revoked_at": now, "updated_at": now})
                current = self._build(
                    user.id,
                    now,
                    record.device_name,
                    ip_address or record.ip_address,
                    user_agent or record.user_agent,
                )
                self.db.add(current)
            else:
                self._claim(record, {"last_used_at": now, "updated_at": now})
                current = record

            self.db.commit()
            self.db.refresh(current)

        record_token_event("rotated" if rotate else "refreshed")
        logger.info(
            f"Refreshed access token for user {user.id}",
            extra={"user_id": user.id, "token_id": current.id, "action": "rotate" if rotate else "refresh"},
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=current,
            expires_in=self.codec.ttl_seconds,
            refresh_expires_in=self.refresh_ttl_seconds,
            rotated=rotate,
        )

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    def revoke(self, token: str, user_id: Optional[int] = None) -> bool:
        """Revoke one refresh token (single-device logout).

        Returns True when this call revoked the token and False when it had
        already been revoked. A token owned by someone other than ``user_id``
        is reported as not found.
        """
        with self._transaction("revoke"):
            record = self._find(token)
            if record is None or (user_id is not None and record.user_id != user_id):
                raise TokenError(TokenErrorKind.NOT_FOUND, "Refresh token not found")
            if record.is_revoked:
                return False

            now = self.clock()
            updated = (
                self.db.query(RefreshToken)
                .filter(RefreshToken.id == record.id, RefreshToken.revoked_at.is_(None))
                .update({"revoked_at": now, "updated_at": now}, synchronize_session=False)
            )
            self.db.commit()

        if updated:
            record_token_event("revoked")
            logger.info(
                f"Revoked refresh token {record.id}",
                extra={"user_id": record.user_id, "token_id": record.id, "action": "revoke"},
            )
        return bool(updated)

    def revoke_all(self, user_id: int) -> int:
        """Revoke every active session of ``user_id``; returns how many."""
        with self._transaction("revoke_all"):
            now = self.clock()
            count = (
                self.db.query(RefreshToken)
                .filter(
                    RefreshToken.user_id == user_id,
                    RefreshToken.revoked_at.is_(None),
                    RefreshToken.expires_at > now,
                )
                .update({"revoked_at": now, "updated_at": now}, synchronize_session=False)
            )
            self.db.commit()

        record_token_event("revoked_all")
        logger.info(
            f"Revoked {count} refresh token(s) for user {user_id}",
            extra={"user_id": user_id, "action": "revoke_all"},
        )
        return count

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def list_active_sessions(self, user_id: int) -> List[SessionInfo]:
        """Active sessions, most recently used first. Never exposes the token."""
        with self._transaction("list_sessions"):
            now = self.clock()
            rows = (
                self.db.query(RefreshToken)
                .filter(
                    RefreshToken.user_id == user_id,
                    RefreshToken.revoked_at.is_(None),
                    RefreshToken.expires_at > now,
                )
                .order_by(
                    RefreshToken.last_used_at.desc().nulls_last(),
                    RefreshToken.created_at.desc(),
                    RefreshToken.id.desc(),
                )
                .all()
            )

        return [
            SessionInfo(
                id=row.id,
                device_name=row.device_name or UNKNOWN_DEVICE,
                ip_address=row.ip_address,
                user_agent=row.user_agent,
                last_used_at=row.last_used_at,
                expires_at=row.expires_at,
                created_at=row.created_at,
            )
            for row in rows
        ]

    def stats(self, user_id: int) -> TokenStats:
        with self._transaction("stats"):
            now = self.clock()
            revoked = RefreshToken.revoked_at.isnot(None)
            not_revoked = RefreshToken.revoked_at.is_(None)
            base = self.db.query(func.count(RefreshToken.id)).filter(RefreshToken.user_id == user_id)

            total = base.scalar()
            active = base.filter(not_revoked, RefreshToken.expires_at > now).scalar()
            expired = base.filter(and_(not_revoked, RefreshToken.expires_at <= now)).scalar()
            revoked_count = base.filter(revoked).scalar()

        return TokenStats(
            total_issued=total or 0,
            active_count=active or 0,
            expired_count=expired or 0,
            revoked_count=revoked_count or 0,
        )
