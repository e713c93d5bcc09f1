"""Login: credential check, lockout bookkeeping, token issuance"""
import math
from datetime import timedelta
from typing import Optional, Tuple

from app.database import storage_guard
from app.errors import AuthErrorKind, LoginError
from app.models.user import User
from app.services.token_service import TokenPair, TokenSessionManager
from app.services.user_store import UserStore
from app.utils.logger import logger


class AuthService:
    """Verify credentials and open a new device session.

    After ``max_attempts`` consecutive wrong passwords the account is locked
    for ``lockout_minutes``; a successful login clears the counter.
    """

    def __init__(
        self,
        user_store: UserStore,
        tokens: TokenSessionManager,
        max_attempts: int = 5,
        lockout_minutes: int = 15,
    ):
        self.user_store = user_store
        self.tokens = tokens
        self.max_attempts = max_attempts
        self.lockout = timedelta(minutes=lockout_minutes)

    @property
    def db(self):
        return self.user_store.db

    def login(
        self,
        email: str,
        password: str,
        device_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[User, TokenPair]:
        now = self.tokens.clock()
        user = self.user_store.get_by_email(email)

        if user is None:
            raise LoginError(AuthErrorKind.INVALID_CREDENTIALS)

        if user.locked_until and user.locked_until > now:
            remaining = max(1, math.ceil((user.locked_until - now).total_seconds() / 60))
            raise LoginError(
                AuthErrorKind.ACCOUNT_LOCKED,
                f"Account is locked due to too many failed login attempts. "
                f"Please try again in {remaining} minutes.",
            )

        if not user.is_active:
            raise LoginError(AuthErrorKind.ACCOUNT_INACTIVE)

        if not user.has_verified_email:
            raise LoginError(AuthErrorKind.EMAIL_NOT_VERIFIED)

        if not self.user_store.check_password(user, password):
            self._register_failure(user, now)
            attempts_left = self.max_attempts - user.login_attempts
            if attempts_left > 0:
                raise LoginError(
                    AuthErrorKind.INVALID_CREDENTIALS,
                    f"Invalid credentials. {attempts_left} attempts remaining.",
                )
            raise LoginError(
                AuthErrorKind.ACCOUNT_LOCKED,
                f"Account locked due to too many failed login attempts. "
                f"Please try again in {int(self.lockout.total_seconds() // 60)} minutes.",
            )

        self._register_success(user, now)
        pair = self.tokens.generate_tokens(user, device_name, ip_address, user_agent)

        logger.info(
            f"User {user.id} logged in",
            extra={"user_id": user.id, "device_name": device_name, "action": "login"},
        )
        return user, pair

    def _register_failure(self, user: User, now) -> None:
        with storage_guard(self.db, "register_login_failure"):
            user.login_attempts = (user.login_attempts or 0) + 1
            if user.login_attempts >= self.max_attempts:
                user.locked_until = now + self.lockout
                logger.warning(
                    f"Locked user {user.id} after {user.login_attempts} failed logins",
                    extra={"user_id": user.id, "action": "lockout"},
                )
            self.db.commit()

    def _register_success(self, user: User, now) -> None:
        with storage_guard(self.db, "register_login_success"):
            user.login_attempts = 0
            user.locked_until = None
            user.last_login_at = now
            self.db.commit()
