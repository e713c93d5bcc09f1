"""
Demo user seeder for the ReWear auth backend

Creates one account of each kind, all with verified e-mail and the same
password, so the login / refresh / sessions flow can be tried right away:
  - admin@rewear.test    (admin)
  - buyer@rewear.test    (user)
  - driver@rewear.test   (user, verified driver)
  - charity@rewear.test  (charity)

Run against the database configured in .env:
    python seed_users.py
"""
from typing import Dict, List

from app.database import Base, SessionLocal, engine
from app.models.user import User
from app.services.user_store import hash_password
from app.utils.clock import utcnow

DEMO_PASSWORD = "SecurePassword123!"

DEMO_USERS: List[Dict] = [
    {"name": "ReWear Admin", "email": "admin@rewear.test", "user_type": "admin"},
    {"name": "Bella Buyer", "email": "buyer@rewear.test", "user_type": "user"},
    {
        "name": "Dana Driver",
        "email": "driver@rewear.test",
        "user_type": "user",
        "is_driver": True,
        "driver_verified": True,
    },
    {
        "name": "Warm Hearts Charity",
        "email": "charity@rewear.test",
        "user_type": "charity",
    },
]


def seed_users() -> int:
    """Insert the demo users that don't exist yet; returns how many were created."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    created = 0
    try:
        for data in DEMO_USERS:
            if db.query(User).filter(User.email == data["email"]).first():
                print(f"  - {data['email']} already exists")
                continue
            db.add(User(
                password_hash=hash_password(DEMO_PASSWORD),
                email_verified_at=utcnow(),
                **data,
            ))
            created += 1
            print(f"  ✓ {data['email']} ({data['user_type']})")
        db.commit()
    finally:
        db.close()
    return created


if __name__ == "__main__":
    print("\n🌱 Seeding demo users for ReWear...\n")
    count = seed_users()
    print(f"\nDone: {count} user(s) created. Password for all: {DEMO_PASSWORD}\n")
