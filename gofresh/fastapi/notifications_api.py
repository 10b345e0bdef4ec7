# gofresh/fastapi/notifications_api.py

from fastapi import APIRouter, Depends, Query

from gofresh.fastapi.security import auth_identity
from gofresh.models.auth_models import Identity
from gofresh.services.notification_service import NotificationService

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(auth_identity),
):
    rows = NotificationService.list_for_user(identity.userId, unread_only=unread_only, limit=limit)
    return {
        "ok": True,
        "unread": NotificationService.unread_count(identity.userId),
        "notifications": rows,
    }


@router.post("/read-all")
def mark_all_read(identity: Identity = Depends(auth_identity)):
    return {"ok": True, "updated": NotificationService.mark_all_read(identity.userId)}


@router.post("/{notification_id}/read")
def mark_read(notification_id: str, identity: Identity = Depends(auth_identity)):
    NotificationService.mark_read(identity.userId, notification_id)
    return {"ok": True}
