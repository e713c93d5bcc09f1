"""Tests for the refresh token lifecycle"""
import pytest
from sqlalchemy.exc import OperationalError

from app.errors import StorageUnavailable, TokenError, TokenErrorKind
from app.models.refresh_token import RefreshToken
from app.services.token_service import UNKNOWN_DEVICE, TokenSessionManager
from app.services.user_store import UserStore

from conftest import TestingSessionLocal


def _kind(call, *args, **kwargs) -> TokenErrorKind:
    with pytest.raises(TokenError) as exc_info:
        call(*args, **kwargs)
    return exc_info.value.kind


def _active_tokens(db, user_id: int):
    return (
        db.query(RefreshToken)
        .filter(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .all()
    )


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------

def test_generate_tokens(manager: TokenSessionManager, codec, user, clock):
    """Test that login-time issuance returns a usable access token and a stored refresh token"""
    pair = manager.generate_tokens(user, device_name="iPhone 13", ip_address="10.0.0.1", user_agent="ReWear/1.0")

    assert pair.expires_in == 3600
    assert pair.refresh_expires_in == 30 * 24 * 3600
    assert codec.verify(pair.access_token).user_id == user.id

    record = pair.refresh_token
    assert len(record.token) == 64
    assert record.device_name == "iPhone 13"
    assert record.ip_address == "10.0.0.1"
    assert record.user_agent == "ReWear/1.0"
    assert record.revoked_at is None
    assert record.created_at == clock()
    assert (record.expires_at - record.created_at).days == 30


def test_each_login_gets_its_own_token(manager: TokenSessionManager, user):
    """Test that two logins produce two independent sessions"""
    first = manager.issue(user.id, device_name="Phone")
    second = manager.issue(user.id, device_name="Laptop")
    assert first.token != second.token
    assert len(manager.list_active_sessions(user.id)) == 2


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------

def test_refresh_without_rotation_keeps_token(manager: TokenSessionManager, codec, user, clock):
    """Test that refreshing without rotation returns the same refresh token"""
    record = manager.issue(user.id, device_name="Phone")

    clock.advance(minutes=5)
    first = manager.refresh(record.token)
    clock.advance(minutes=5)
    second = manager.refresh(record.token)

    assert first.refresh_token.token == record.token
    assert second.refresh_token.token == record.token
    assert second.refresh_token.last_used_at == clock()
    assert not second.rotated
    assert codec.verify(second.access_token).user_id == user.id


def test_refresh_with_rotation_replaces_token(manager: TokenSessionManager, db, user, clock):
    """Test that rotation revokes the old token and returns a new one"""
    old = manager.issue(user.id, device_name="Phone", ip_address="10.0.0.1", user_agent="ReWear/1.0")

    clock.advance(minutes=5)
    pair = manager.refresh(old.token, rotate=True, ip_address="10.0.0.2")

    assert pair.rotated
    assert pair.refresh_token.token != old.token
    assert pair.refresh_token.device_name == "Phone"
    assert pair.refresh_token.ip_address == "10.0.0.2"
    assert pair.refresh_token.user_agent == "ReWear/1.0"

    db.refresh(old)
    assert old.revoked_at == clock()
    assert _kind(manager.refresh, old.token) == TokenErrorKind.REVOKED

    # The replacement keeps working
    assert manager.refresh(pair.refresh_token.token).refresh_token.token == pair.refresh_token.token


def test_refresh_unknown_token(manager: TokenSessionManager):
    """Test refreshing with a token that was never issued"""
    assert _kind(manager.refresh, "does-not-exist") == TokenErrorKind.NOT_FOUND


def test_refresh_expired_token(manager: TokenSessionManager, user, clock):
    """Test that a refresh token past its expiry is rejected"""
    record = manager.issue(user.id)
    clock.advance(days=30)
    assert _kind(manager.refresh, record.token) == TokenErrorKind.EXPIRED


def test_refresh_just_before_expiry(manager: TokenSessionManager, user, clock):
    record = manager.issue(user.id)
    clock.advance(days=30, seconds=-1)
    assert manager.refresh(record.token).refresh_token.token == record.token


def test_refresh_picks_up_role_changes(manager: TokenSessionManager, codec, db, user):
    """Test that claims are rebuilt from the current user row on refresh"""
    record = manager.issue(user.id)
    assert codec.verify(manager.refresh(record.token).access_token).claims.roles == ("user",)

    user.is_driver = True
    user.driver_verified = True
    db.commit()

    claims = codec.verify(manager.refresh(record.token).access_token).claims
    assert claims.has_role("driver")
    assert claims.has_role("verified_driver")


def test_refresh_for_inactive_user(manager: TokenSessionManager, db, user):
    """Test that a deactivated account cannot refresh"""
    record = manager.issue(user.id)
    user.is_active = False
    db.commit()

    assert _kind(manager.refresh, record.token) == TokenErrorKind.ACCOUNT_INACTIVE


def test_concurrent_rotation_has_one_winner(db, codec, user, clock):
    """Test that two rotations of the same token cannot both succeed"""
    first = TokenSessionManager(db, codec, UserStore(db), clock=clock)
    token = first.issue(user.id, device_name="Phone").token

    other_db = TestingSessionLocal()
    try:
        second = TokenSessionManager(other_db, codec, UserStore(other_db), clock=clock)
        # Load the row into the second session before the first rotation commits
        other_db.query(RefreshToken).filter(RefreshToken.token == token).first()

        winner = first.refresh(token, rotate=True)
        assert _kind(second.refresh, token, rotate=True) == TokenErrorKind.REVOKED
    finally:
        other_db.close()

    active = _active_tokens(db, user.id)
    assert [row.token for row in active] == [winner.refresh_token.token]


# ---------------------------------------------------------------------------
# Revoke
# ---------------------------------------------------------------------------

def test_revoke(manager: TokenSessionManager, user):
    """Test single-device logout"""
    record = manager.issue(user.id)

    assert manager.revoke(record.token) is True
    assert _kind(manager.refresh, record.token) == TokenErrorKind.REVOKED


def test_revoke_twice_is_harmless(manager: TokenSessionManager, db, user, clock):
    """Test that revoking an already revoked token keeps the first revocation time"""
    record = manager.issue(user.id)
    manager.revoke(record.token)
    revoked_at = clock()

    clock.advance(minutes=1)
    assert manager.revoke(record.token) is False

    db.refresh(record)
    assert record.revoked_at == revoked_at


def test_revoke_unknown_token(manager: TokenSessionManager):
    assert _kind(manager.revoke, "does-not-exist") == TokenErrorKind.NOT_FOUND


def test_revoke_someone_elses_token(manager: TokenSessionManager, user, make_user):
    """Test that a user cannot revoke another user's session"""
    other = make_user()
    record = manager.issue(other.id)

    assert _kind(manager.revoke, record.token, user_id=user.id) == TokenErrorKind.NOT_FOUND
    assert manager.refresh(record.token).refresh_token.token == record.token


def test_revoke_all(manager: TokenSessionManager, user, make_user):
    """Test logging out of every device"""
    other = make_user()
    tokens = [manager.issue(user.id, device_name=f"Device {i}") for i in range(3)]
    manager.revoke(tokens[0].token)
    other_token = manager.issue(other.id)

    assert manager.revoke_all(user.id) == 2
    for record in tokens:
        assert _kind(manager.refresh, record.token) == TokenErrorKind.REVOKED

    # Other users are untouched
    assert manager.refresh(other_token.token).refresh_token.token == other_token.token
    assert manager.revoke_all(user.id) == 0


# ---------------------------------------------------------------------------
# Sessions and stats
# ---------------------------------------------------------------------------

def test_list_active_sessions(manager: TokenSessionManager, user, clock):
    """Test that sessions are ordered by last use and exclude dead tokens"""
    phone = manager.issue(user.id, device_name="Phone")
    clock.advance(minutes=1)
    laptop = manager.issue(user.id, device_name="Laptop")
    clock.advance(minutes=1)
    revoked = manager.issue(user.id, device_name="Tablet")
    manager.revoke(revoked.token)
    clock.advance(minutes=1)
    unnamed = manager.issue(user.id)
    clock.advance(minutes=1)
    manager.refresh(phone.token)

    sessions = manager.list_active_sessions(user.id)

    assert [s.id for s in sessions] == [phone.id, unnamed.id, laptop.id]
    assert sessions[1].device_name == UNKNOWN_DEVICE
    assert all("token" not in s._fields for s in sessions)


def test_list_active_sessions_excludes_expired(manager: TokenSessionManager, user, clock):
    manager.issue(user.id, device_name="Old")
    clock.advance(days=29)
    fresh = manager.issue(user.id, device_name="New")
    clock.advance(days=2)

    assert [s.id for s in manager.list_active_sessions(user.id)] == [fresh.id]


def test_stats(manager: TokenSessionManager, user, clock):
    """Test token counts per state"""
    manager.issue(user.id)
    clock.advance(days=29)
    revoked = manager.issue(user.id)
    manager.issue(user.id)
    manager.revoke(revoked.token)
    clock.advance(days=2)

    stats = manager.stats(user.id)
    assert stats.total_issued == 3
    assert stats.active_count == 1
    assert stats.expired_count == 1
    assert stats.revoked_count == 1


def test_stats_for_user_without_tokens(manager: TokenSessionManager, user):
    stats = manager.stats(user.id)
    assert tuple(stats) == (0, 0, 0, 0)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

def test_storage_failure_is_reported(manager: TokenSessionManager, monkeypatch):
    """Test that database errors surface as StorageUnavailable"""

    def broken_find(token):
        raise OperationalError("SELECT", {}, Exception("database is down"))

    monkeypatch.setattr(manager, "_find", broken_find)

    with pytest.raises(StorageUnavailable) as exc_info:
        manager.refresh("anything")
    assert exc_info.value.kind == TokenErrorKind.STORAGE_UNAVAILABLE


def test_tokens_deleted_with_user(manager: TokenSessionManager, db, user):
    """Test that deleting a user removes their refresh tokens"""
    manager.issue(user.id)
    manager.issue(user.id)
    user_id = user.id

    db.delete(user)
    db.commit()

    assert db.query(RefreshToken).filter(RefreshToken.user_id == user_id).count() == 0
