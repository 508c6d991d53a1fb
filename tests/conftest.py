"""
Test configuration and fixtures.
Uses a throwaway SQLite file per test for fast tests. Mocks all external services.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from wilnara.database import Base
import wilnara.models  # noqa: F401
from wilnara.services.notification_queue import NotificationQueue


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


class FakeClock:
    """Injectable clock so retry backoff and scheduling can be fast-forwarded."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
async def session_factory(tmp_path):
    """
    SQLite file database. Each queue session gets its own connection,
    so concurrently running jobs never share a transaction.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def senders():
    """One succeeding AsyncMock per channel - prevents real provider calls in tests."""
    return {
        "email": AsyncMock(return_value=True),
        "sms": AsyncMock(return_value=True),
        "push": AsyncMock(return_value=True),
        "webhook": AsyncMock(return_value=True),
    }


@pytest.fixture
async def queue(session_factory, senders, clock):
    q = NotificationQueue(session_factory, senders, clock=clock, poll_interval_seconds=0.01)
    yield q
    await q.shutdown(timeout=1.0)


@pytest.fixture
def sample_email():
    return {
        "to": "cliente@example.com",
        "subject": "Agendamento confirmado",
        "template": "booking_confirmation",
        "variables": {
            "user_name": "Ana",
            "service_name": "Box Braids",
            "braider_name": "Wilnara",
            "booking_date": "20/01/2026",
            "booking_time": "14:00",
        },
    }


@pytest.fixture
def sample_sms():
    return {"phone": "+5511999990000", "message": "O seu agendamento foi confirmado."}


@pytest.fixture
def sample_push():
    return {"user_id": "user-1", "title": "Novo agendamento", "body": "Tem um novo pedido."}


@pytest.fixture
def sample_webhook():
    return {"url": "https://hooks.example.com/booking", "payload": {"event": "booking.created"}}
