from typing import List

import structlog

from denasetu.core.exceptions import Forbidden, NotFound
from denasetu.schemas.activity import NotificationResponse
from denasetu.schemas.session import SessionContext
from denasetu.store.data_store import DataStore

logger = structlog.get_logger(__name__)


class NotificationService:
    """In-app notifications written by the donation lifecycle"""

    @staticmethod
    def list_for_user(store: DataStore, user_id: str, unread_only: bool = False,
                      limit: int = 100) -> List[NotificationResponse]:
        filters = {"user_id": user_id}
        if unread_only:
            filters["is_read"] = False
        rows = store.select("notifications", filters, limit=limit)
        return [NotificationResponse.model_validate(r) for r in rows]

    @staticmethod
    def mark_read(store: DataStore, session: SessionContext, notification_id: str) -> NotificationResponse:
        notification = store.get("notifications", notification_id)
        if notification is None:
            raise NotFound(f"Notification {notification_id} not found")
        if notification.user_id != session.user_id:
            raise Forbidden("Notification belongs to another user")

        if not notification.is_read:
            store.update("notifications", notification_id, {"is_read": True})
            logger.debug("Notification marked read", notification_id=notification_id, user_id=session.user_id)
        return NotificationResponse.model_validate(store.get("notifications", notification_id, refresh=True))
