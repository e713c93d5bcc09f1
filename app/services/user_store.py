"""User lookups and password hashing"""
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.database import storage_guard
from app.models.user import User

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


class UserStore:
    """Read access to users for the auth core.

    Lookups raise StorageUnavailable when the database cannot be reached.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: int) -> Optional[User]:
        with storage_guard(self.db, "get_user"):
            return self.db.query(User).filter(User.id == user_id).first()

    def get_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive match on the stored address"""
        with storage_guard(self.db, "get_user_by_email"):
            return (
                self.db.query(User)
                .filter(func.lower(User.email) == email.strip().lower())
                .first()
            )

    def check_password(self, user: User, password: str) -> bool:
        return verify_password(password, user.password_hash)
