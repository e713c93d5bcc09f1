"""User model: marketplace account and the owner of refresh tokens"""
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.clock import utcnow


class User(Base):
    """A ReWear account.

    ``user_type`` is one of ``user``, ``charity`` or ``admin``. Driver status
    is orthogonal to the type: any ``user`` may apply to drive, and becomes
    a verified driver once an admin approves the application.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("user_type IN ('user', 'charity', 'admin')", name="users_user_type_check"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True, unique=True)
    user_type = Column(String(20), nullable=False, default="user")

    is_driver = Column(Boolean, default=False, nullable=False)
    driver_verified = Column(Boolean, default=False, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    email_verified_at = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)
    login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_verified_driver(self) -> bool:
        return bool(self.is_driver and self.driver_verified)

    @property
    def has_verified_email(self) -> bool:
        return self.email_verified_at is not None
