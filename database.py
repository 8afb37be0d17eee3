"""
MongoDB connection for the attendance API.

The client is created lazily on first use and kept for the life of the process.
"""

import os
import logging
import threading
from typing import Optional

from dotenv import load_dotenv
from pymongo import MongoClient, ASCENDING
from pymongo.database import Database
from pymongo.errors import ConfigurationError, OperationFailure

load_dotenv()

logger = logging.getLogger(__name__)

MONGODB_URI = os.getenv("MONGODB_URI")
DATABASE_NAME = os.getenv("DATABASE_NAME", "attendance")
PORT = int(os.getenv("PORT", 3000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

SERVER_SELECTION_TIMEOUT_MS = 5000
SOCKET_TIMEOUT_MS = 45000

# Collection names
STUDENTS = "students"
ATTENDANCE = "attendances"
CLASSES = "classes"
TEACHERS = "teachers"

_client: Optional[MongoClient] = None
_lock = threading.Lock()


def ensure_indexes(db: Database) -> None:
    try:
        db[TEACHERS].create_index([("email", ASCENDING)], unique=True)
        db[ATTENDANCE].create_index([("studentId", ASCENDING), ("date", ASCENDING)], unique=True)
    except OperationFailure as e:
        logger.warning("Could not build indexes: %s", e)


def connect(uri: Optional[str] = None) -> MongoClient:
    uri = uri or MONGODB_URI
    if not uri:
        raise ConfigurationError("MONGODB_URI is not set")
    client = MongoClient(
        uri,
        tz_aware=True,
        serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS,
        socketTimeoutMS=SOCKET_TIMEOUT_MS,
    )
    try:
        client.admin.command("ping")
        ensure_indexes(client.get_default_database(default=DATABASE_NAME))
    except Exception:
        client.close()
        raise
    logger.info("Connected to MongoDB")
    return client


def get_database() -> Database:
    """Return the shared database handle, connecting on the first call.

    Raises the underlying pymongo error when the server cannot be reached; the
    next call will try again.
    """
    global _client
    if _client is None:
        with _lock:
            if _client is None:
                try:
                    _client = connect()
                except Exception as e:
                    logger.error("MongoDB connection error: %s", e)
                    raise
    return _client.get_default_database(default=DATABASE_NAME)


def close() -> None:
    global _client
    with _lock:
        if _client is not None:
            _client.close()
            _client = None
            logger.info("Database connection closed")
