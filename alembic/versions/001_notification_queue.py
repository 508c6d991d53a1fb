"""Notification queue table for async email, SMS, push and webhook jobs.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "notification_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False, server_default="normal"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "type IN ('email', 'sms', 'push', 'webhook', 'system')",
            name="ck_notification_queue_type",
        ),
        sa.CheckConstraint(
            "priority IN ('low', 'normal', 'high', 'urgent')",
            name="ck_notification_queue_priority",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'retrying')",
            name="ck_notification_queue_status",
        ),
        sa.CheckConstraint("attempts <= max_attempts", name="ck_notification_queue_attempts"),
    )
    op.create_index(
        "ix_notification_queue_processing",
        "notification_queue",
        ["status", "scheduled_at", "priority"],
    )
    op.create_index("ix_notification_queue_updated_at", "notification_queue", ["updated_at"])


def downgrade() -> None:
    op.drop_index("ix_notification_queue_updated_at", table_name="notification_queue")
    op.drop_index("ix_notification_queue_processing", table_name="notification_queue")
    op.drop_table("notification_queue")
