"""
MongoDB connection utilities.

Provides a lazily created MongoDB client and collection accessor
with connection validation and error logging.
"""

import threading
import time
from typing import Any, Optional

import certifi
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConfigurationError,
    ConnectionFailure,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from app.ai_service.config import get_settings
from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)

_client: Optional[MongoClient] = None
_database: Optional[Database] = None
_lock = threading.Lock()


def _parse_mongo_uri(uri: str) -> dict:
    """
    Extract connection details for logging without exposing credentials.
    """
    if "mongodb://" not in uri and "mongodb+srv://" not in uri:
        return {"host": "unknown", "is_srv": False, "protocol": "unknown"}

    is_srv = "mongodb+srv://" in uri
    remainder = uri.split("://", 1)[1]
    host_part = remainder.split("@")[-1].split("/")[0]

    return {
        "host": host_part,
        "is_srv": is_srv,
        "protocol": "mongodb+srv" if is_srv else "mongodb",
    }


def _initialize_connection() -> tuple[MongoClient, Database]:
    """
    Create the MongoDB client.

    Raises:
        RuntimeError: If the client cannot be configured.
    """
    settings = get_settings()
    uri_info = _parse_mongo_uri(settings.MONGO_URI)

    logger.info(
        "Initializing MongoDB connection",
        extra={
            "database": settings.MONGO_DB,
            "protocol": uri_info["protocol"],
            "host": uri_info["host"],
        },
    )

    start_time = time.time()
    options: dict[str, Any] = {
        "serverSelectionTimeoutMS": 10000,
        "connectTimeoutMS": 10000,
        "socketTimeoutMS": 10000,
        "uuidRepresentation": "standard",
        "tz_aware": True,
    }
    if settings.MONGO_TLS:
        options.update({"tls": True, "tlsCAFile": certifi.where()})

    try:
        client = MongoClient(settings.MONGO_URI, **options)
    except ConfigurationError as exc:
        logger.critical(
            "MongoDB configuration error",
            extra={"error": str(exc)},
        )
        raise RuntimeError(f"MongoDB configuration error: {exc}") from exc

    database = client[settings.MONGO_DB]

    logger.info(
        "MongoDB client created",
        extra={
            "database": settings.MONGO_DB,
            "host": uri_info["host"],
            "setup_time_ms": round((time.time() - start_time) * 1000, 2),
        },
    )
    return client, database


def get_database() -> Database:
    """Return the shared database handle, creating the client on first use."""
    global _client, _database

    if _database is None:
        with _lock:
            if _database is None:
                _client, _database = _initialize_connection()
    return _database


def get_collection(collection_name: str) -> Collection[Any]:
    """
    Retrieve a MongoDB collection by name.

    Raises:
        RuntimeError: If collection access fails.
    """
    try:
        return get_database()[collection_name]
    except PyMongoError as exc:
        logger.error(
            "Failed to access MongoDB collection",
            extra={"collection": collection_name, "error": str(exc)},
        )
        raise RuntimeError(f"Unable to access collection: {collection_name}") from exc


def ping() -> None:
    """
    Ping the server.

    Raises:
        RuntimeError: If the server cannot be reached.
    """
    database = get_database()
    try:
        database.client.admin.command("ping")
    except ServerSelectionTimeoutError as exc:
        raise RuntimeError("MongoDB server selection timeout") from exc
    except ConnectionFailure as exc:
        raise RuntimeError("MongoDB connection failure") from exc
    except OperationFailure as exc:
        raise RuntimeError(f"MongoDB operation failure: {exc}") from exc


def close_connection() -> None:
    global _client, _database

    with _lock:
        if _client is not None:
            _client.close()
            logger.info("MongoDB connection closed")
        _client = None
        _database = None
