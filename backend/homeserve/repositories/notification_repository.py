"""Notification outbox persistence."""

from typing import List

from sqlalchemy.orm import Session

from ..models.notification import Notification
from .base_repository import BaseRepository


class NotificationRepository(BaseRepository[Notification]):
    def __init__(self, db: Session):
        super().__init__(db, Notification)

    def list_for_recipient(
        self, recipient_model: str, recipient_id: str, limit: int = 50
    ) -> List[Notification]:
        query = (
            self._build_query()
            .filter(
                Notification.recipient_model == recipient_model,
                Notification.recipient_id == recipient_id,
            )
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        return self._execute_query(query)
