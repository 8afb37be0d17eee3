"""
Seed the default admin and teacher accounts.

Run directly against the database with `python setup_admin.py`; the API exposes
the same accounts through POST /api/setup.
"""

import logging
import sys
from typing import List

from pymongo.database import Database

import database
from schemas import TeacherIn, serialize, utcnow

logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@school.com"

DEFAULT_ACCOUNTS = [
    TeacherIn(email=ADMIN_EMAIL, name="Admin User", role="admin", assigned_classes=[]),
    TeacherIn(email="teacher@school.com", name="Teacher User", role="teacher", assigned_classes=[]),
]


def _create(db: Database, account: TeacherIn) -> dict:
    doc = account.to_document()
    doc["createdAt"] = utcnow()
    res = db[database.TEACHERS].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def setup_users(db: Database) -> dict:
    """One-time setup: create both accounts unless the admin already exists."""
    if db[database.TEACHERS].find_one({"email": ADMIN_EMAIL}):
        users = [serialize(d) for d in db[database.TEACHERS].find()]
        return {"message": "Users already exist", "users": users}

    users = [serialize(_create(db, account)) for account in DEFAULT_ACCOUNTS]
    logger.info("Seeded %d default accounts", len(users))
    return {"message": "Setup completed successfully!", "users": users}


def seed_accounts(db: Database) -> List[dict]:
    created = []
    for account in DEFAULT_ACCOUNTS:
        if db[database.TEACHERS].find_one({"email": account.email}):
            logger.info("%s user already exists (%s)", account.role.capitalize(), account.email)
            continue
        created.append(_create(db, account))
        logger.info("%s user created (%s)", account.role.capitalize(), account.email)
    return created


def main() -> int:
    logging.basicConfig(
        level=database.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Connecting to MongoDB...")
    try:
        seed_accounts(database.get_database())
    except Exception:
        logger.exception("Error setting up users")
        return 1
    finally:
        database.close()

    logger.info("Setup complete. Accounts: %s", ", ".join(a.email for a in DEFAULT_ACCOUNTS))
    logger.info("Note: create these users in the sign-in provider too.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
