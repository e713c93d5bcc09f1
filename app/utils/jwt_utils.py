"""JWT utilities: access token claims, signing and verification"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, NamedTuple, Optional, Tuple

from jose import JWTError, jwt

from app.errors import TokenError, TokenErrorKind
from app.utils.clock import Clock, utcnow

ACCESS_TOKEN_TYPE = "access"


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

class Claims(NamedTuple):
    """Authorization snapshot carried inside an access token.

    Computed once from the user row when the token is minted, so downstream
    checks never have to go back to the database.
    """
    user_type: str
    roles: Tuple[str, ...]

    @classmethod
    def for_user(cls, user: Any) -> "Claims":
        roles = {user.user_type}
        if user.is_driver:
            roles.add("driver")
        if user.is_verified_driver:
            roles.add("verified_driver")
        return cls(user_type=user.user_type, roles=tuple(sorted(roles)))

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def to_payload(self) -> Dict[str, Any]:
        return {"user_type": self.user_type, "roles": list(self.roles)}


class VerifiedToken(NamedTuple):
    """Result of a successful :meth:`AccessTokenCodec.verify`."""
    user_id: int
    claims: Claims
    jti: str
    issued_at: datetime
    expires_at: datetime


def _to_naive_utc(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


def to_epoch(moment: datetime) -> float:
    return moment.replace(tzinfo=timezone.utc).timestamp()


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

class AccessTokenCodec:
    """Mint and verify short-lived, stateless bearer tokens.

    Verification is a local computation only: the codec never looks a token
    up in storage, which is why access tokens cannot be revoked early.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        ttl_seconds: int = 3600,
        clock: Optional[Clock] = None,
    ):
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds
        self.clock = clock or utcnow

    def issue(self, user_id: int, claims: Claims) -> str:
        """Sign and return a JWT access token.

        Args:
            user_id: Value for the 'sub' claim.
            claims:  Role snapshot embedded alongside the subject.

        Returns:
            Signed JWT string.
        """
        now = int(to_epoch(self.clock()))

        payload: Dict[str, Any] = {
            "sub": str(user_id),
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + self.ttl_seconds,
            "type": ACCESS_TOKEN_TYPE,
            **claims.to_payload(),
        }

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> VerifiedToken:
        """Verify a JWT and return its subject and claims.

        Checks, in order:
        1. The token decodes (header + payload)           -> MALFORMED
        2. The signature matches our key and algorithm    -> SIGNATURE_INVALID
        3. ``now < exp``                                  -> EXPIRED

        Raises:
            TokenError: with the kind of the first failed check.
        """
        try:
            jwt.get_unverified_header(token)
            unverified = jwt.get_unverified_claims(token)
        except (JWTError, AttributeError, TypeError, ValueError) as exc:
            raise TokenError(TokenErrorKind.MALFORMED) from exc

        if not isinstance(unverified, dict):
            raise TokenError(TokenErrorKind.MALFORMED)

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError as exc:
            raise TokenError(TokenErrorKind.SIGNATURE_INVALID) from exc

        try:
            user_id = int(payload["sub"])
            issued_at = int(payload["iat"])
            expires_at = int(payload["exp"])
            claims = Claims(
                user_type=str(payload["user_type"]),
                roles=tuple(payload.get("roles", ())),
            )
            jti = str(payload["jti"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenError(TokenErrorKind.MALFORMED) from exc

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise TokenError(TokenErrorKind.MALFORMED, "Not an access token")

        if to_epoch(self.clock()) >= expires_at:
            raise TokenError(TokenErrorKind.EXPIRED)

        return VerifiedToken(
            user_id=user_id,
            claims=claims,
            jti=jti,
            issued_at=_to_naive_utc(issued_at),
            expires_at=_to_naive_utc(expires_at),
        )

    def remaining_seconds(self, verified: VerifiedToken) -> int:
        """Whole seconds left before ``verified`` expires (never negative)."""
        return max(int(to_epoch(verified.expires_at) - to_epoch(self.clock())), 0)
