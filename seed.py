"""
Seed development accounts: one admin plus a batch of faker-generated users.

    DATABASE_URL=mongodb://localhost:27017 DATABASE_NAME=market python seed.py
"""
import logging
import os

from faker import Faker
from pymongo.database import Database

from database import close_database, ensure_indexes, open_database
from main import hash_password as default_hash_password
from schemas import User
from stores import UserStore

ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "admin123")
USER_PASSWORD = os.getenv("SEED_USER_PASSWORD", "user123")
SEED_USER_COUNT = int(os.getenv("SEED_USER_COUNT", "20"))

logger = logging.getLogger(__name__)


def seed_users(db: Database, count: int = SEED_USER_COUNT, hash_password=None, fake: Faker = None) -> int:
    """Create the admin if missing and top up regular users to `count`. Returns how many were created."""
    hash_password = hash_password or default_hash_password
    fake = fake or Faker()
    users = UserStore(db)
    created = 0

    if not db["user"].find_one({"role": "admin"}):
        users.create(User(email=ADMIN_EMAIL, password_hash=hash_password(ADMIN_PASSWORD), role="admin"))
        created += 1

    existing = db["user"].count_documents({"role": "user"})
    password_hash = hash_password(USER_PASSWORD)
    for _ in range(max(0, count - existing)):
        email = fake.unique.email()
        if users.find_by_email(email):
            continue
        users.create(User(email=email, password_hash=password_hash, role="user"))
        created += 1

    logger.info("Seeded %d user(s)", created)
    return created


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    client, db = open_database()
    if db is None:
        raise SystemExit("DATABASE_URL and DATABASE_NAME must be set")
    try:
        ensure_indexes(db)
        seed_users(db)
    finally:
        close_database(client)
