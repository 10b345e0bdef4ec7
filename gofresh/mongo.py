# gofresh/mongo.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from gofresh.app_config import AppConfig
from gofresh.errors import NotFoundError

logger = structlog.stdlib.get_logger()

_client: Optional[Any] = None
_db: Optional[Database] = None


def init_mongo(config: AppConfig, client: Optional[Any] = None) -> Database:
    """
    Initializes the Mongo client once at startup.
    Pass `client` to reuse an existing client (tests hand in a mongomock client).
    The connection itself is lazy: nothing hits the server until the first query.
    """
    global _client, _db

    if client is None:
        client = MongoClient(config.mongo_uri, tz_aware=True)

    _client = client
    _db = client[config.mongo_db_name]
    logger.info("mongo_initialized", db=config.mongo_db_name)
    return _db


def get_db() -> Database:
    """
    Returns the initialized database.
    Services call this on every operation instead of caching collections at import time.
    """
    if _db is None:
        raise RuntimeError("Mongo is not initialized; call init_mongo() during startup")
    return _db


def get_col(name: str):
    """
    Convenience helper:
      bids = get_col("bids")
    """
    return get_db()[name]


def ensure_indexes(db: Optional[Database] = None) -> None:
    db = db if db is not None else get_db()

    db.users.create_index([("email", ASCENDING)], unique=True)
    db.users.create_index([("userId", ASCENDING)], unique=True)

    db.listings.create_index([("farmer_id", ASCENDING), ("created_at", DESCENDING)])
    db.listings.create_index([("available", ASCENDING), ("bid_end", ASCENDING)])

    db.bids.create_index([("listing_id", ASCENDING), ("amount", DESCENDING)])
    db.bids.create_index([("bidder_id", ASCENDING), ("created_at", DESCENDING)])

    # at most one sale per listing; the payment gate relies on this
    db.sales.create_index([("listing_id", ASCENDING)], unique=True)
    db.sales.create_index([("buyer_id", ASCENDING), ("created_at", DESCENDING)])
    db.sales.create_index([("farmer_id", ASCENDING), ("created_at", DESCENDING)])

    db.payment_orders.create_index([("order_id", ASCENDING)], unique=True)

    db.notifications.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("mongo_indexes_ensured")


# ========= document helpers =========
def to_object_id(raw: str, what: str = "document") -> ObjectId:
    """Parse a path id; unknown or malformed ids are reported as not found."""
    if not raw or not ObjectId.is_valid(raw):
        raise NotFoundError(f"{what.capitalize()} not found")
    return ObjectId(raw)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo drivers may hand back naive datetimes; they are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None
