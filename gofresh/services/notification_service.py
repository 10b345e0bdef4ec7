# gofresh/services/notification_service.py

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from pymongo import DESCENDING

from gofresh.errors import NotFoundError
from gofresh.models.marketplace.notification_models import NotificationType
from gofresh.mongo import get_db, iso, to_object_id

logger = structlog.stdlib.get_logger()


class NotificationService:

    @staticmethod
    def notify(
        user_id: str,
        type_: NotificationType,
        title: str,
        message: str,
        now: Optional[datetime] = None,
        **extra: Any,
    ) -> str:
        """
        Stores one notification for `user_id`.
        `extra` carries context such as listing_id, bid_id, bidder_name, bid_amount.
        """
        doc = {
            "user_id": user_id,
            "type": type_.value,
            "title": title,
            "message": message,
            "read": False,
            "created_at": now or datetime.now(timezone.utc),
            **extra,
        }
        inserted = get_db().notifications.insert_one(doc)
        logger.info("notification_created", user_id=user_id, type=type_.value)
        return str(inserted.inserted_id)

    @staticmethod
    def list_for_user(user_id: str, unread_only: bool = False, limit: int = 50) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"user_id": user_id}
        if unread_only:
            query["read"] = False

        docs = (get_db().notifications
                .find(query)
                .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
                .limit(limit))

        rows = []
        for d in docs:
            rows.append({
                "id": str(d["_id"]),
                "type": d.get("type"),
                "title": d.get("title", ""),
                "message": d.get("message", ""),
                "read": bool(d.get("read", False)),
                "created_at": iso(d.get("created_at")),
                "listing_id": d.get("listing_id"),
                "bid_id": d.get("bid_id"),
                "bidder_name": d.get("bidder_name"),
                "bid_amount": d.get("bid_amount"),
            })
        return rows

    @staticmethod
    def unread_count(user_id: str) -> int:
        return get_db().notifications.count_documents({"user_id": user_id, "read": False})

    @staticmethod
    def mark_read(user_id: str, notification_id: str) -> None:
        oid = to_object_id(notification_id, "notification")
        res = get_db().notifications.update_one(
            {"_id": oid, "user_id": user_id},
            {"$set": {"read": True}},
        )
        if res.matched_count == 0:
            raise NotFoundError("Notification not found")

    @staticmethod
    def mark_all_read(user_id: str) -> int:
        res = get_db().notifications.update_many(
            {"user_id": user_id, "read": False},
            {"$set": {"read": True}},
        )
        return res.modified_count
