"""
Notification dispatch.

The booking core only supplies recipient, title, message and a typed
payload. ``NotificationService`` queues them as outbox rows in the caller's
transaction; push/SMS delivery happens outside this service.
"""

from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy.orm import Session

from ..models.notification import Notification
from ..repositories.factory import RepositoryFactory
from .base import BaseService


class NotificationDispatcher(Protocol):
    def dispatch(
        self,
        *,
        recipient_id: str,
        recipient_model: str,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any: ...


class NotificationService(BaseService):
    """Outbox-backed NotificationDispatcher."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_notification_repository(db)

    def dispatch(
        self,
        *,
        recipient_id: str,
        recipient_model: str,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = self.repository.create(
            recipient_id=recipient_id,
            recipient_model=recipient_model,
            notification_type=notification_type,
            title=title,
            message=message,
            payload=payload or {},
        )
        self.logger.info(
            "Notification queued",
            extra={
                "recipient_id": recipient_id,
                "recipient_model": recipient_model,
                "notification_type": notification_type,
            },
        )
        return notification

    def list_for_recipient(
        self, recipient_model: str, recipient_id: str, limit: int = 50
    ) -> List[Notification]:
        return self.repository.list_for_recipient(recipient_model, recipient_id, limit)
