"""
Database models - import all models here so Alembic can discover them.
"""
from wilnara.models.notification_job import NotificationJob

__all__ = [
    "NotificationJob",
]
