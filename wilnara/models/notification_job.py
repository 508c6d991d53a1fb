"""
NotificationJob model - one row per queued email, SMS, push or webhook.
Supports deferred sends, retries with exponential backoff, and
priority-based processing.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from wilnara.database import Base


class JobType:
    """Job type constants."""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    WEBHOOK = "webhook"
    SYSTEM = "system"

    ALL = (EMAIL, SMS, PUSH, WEBHOOK, SYSTEM)


class JobPriority:
    """Priority constants. Stored as strings, ordered by RANK."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    ALL = (LOW, NORMAL, HIGH, URGENT)
    RANK = {LOW: 0, NORMAL: 1, HIGH: 2, URGENT: 3}


class JobStatus:
    """Status constants."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"

    ALL = (PENDING, PROCESSING, COMPLETED, FAILED, RETRYING)
    CLAIMABLE = (PENDING, RETRYING)
    TERMINAL = (COMPLETED, FAILED)


# Retry ceilings per job type - webhooks are least reliable, so retried most
DEFAULT_MAX_ATTEMPTS = {
    JobType.EMAIL: 3,
    JobType.SMS: 2,
    JobType.PUSH: 2,
    JobType.WEBHOOK: 5,
    JobType.SYSTEM: 3,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationJob(Base):
    __tablename__ = "notification_queue"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(
        String(10), default=JobPriority.NORMAL, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.PENDING, nullable=False
    )

    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    # NULL = due immediately. Also carries the retry backoff.
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_notification_queue_processing", "status", "scheduled_at", "priority"),
        Index("ix_notification_queue_updated_at", "updated_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "payload": self.payload,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<NotificationJob {self.type} ({self.status})>"
