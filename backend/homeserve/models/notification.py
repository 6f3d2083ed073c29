"""Notification outbox rows written by the in-app dispatcher."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, String, Text
import ulid

from ..database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Notification(Base):
    """
    A message queued for a customer or worker.

    Rows are written in the same transaction as the state change that caused
    them; an external sender delivers ``pending`` rows.
    """

    __tablename__ = "notifications"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    recipient_id = Column(String(64), nullable=False)
    recipient_model = Column(String(20), nullable=False)  # customer | worker | admin
    notification_type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("ix_notifications_recipient", "recipient_model", "recipient_id"),)
