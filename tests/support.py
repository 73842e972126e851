import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "text")

import asyncio
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.pool import NullPool

from services.booking_service.dependencies import BookingRuntime
from services.booking_service.notifications import DeliveryClient, NotificationIntent
from shared.config import Settings
from shared.database import create_engine_for, init_db
from shared.domain.equipment import UserRoleType, utcnow
from shared.security.audit import AuditLogModel

STAFF_ID = UUID("11111111-1111-1111-1111-111111111111")
ADMIN_ID = UUID("22222222-2222-2222-2222-222222222222")
STUDENT_ID = UUID("33333333-3333-3333-3333-333333333333")
OTHER_STUDENT_ID = UUID("44444444-4444-4444-4444-444444444444")


def make_engine(path: Path) -> AsyncEngine:
    # One connection per session so concurrent tasks really contend for the write lock
    return create_engine_for(
        f"sqlite+aiosqlite:///{path}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )


def window(hours_ahead: float, duration_hours: float = 1.0) -> tuple[datetime, datetime]:
    """A [start, end) window on tomorrow's hour grid."""
    base = utcnow().replace(minute=0, second=0, microsecond=0) + timedelta(days=1)
    start = base + timedelta(hours=hours_ahead)
    return start, start + timedelta(hours=duration_hours)


class RecordingDeliveryClient(DeliveryClient):
    """Collects intents; can fail for chosen recipients or hold deliveries at a gate."""

    def __init__(self):
        self.attempts: list[NotificationIntent] = []
        self.delivered: list[NotificationIntent] = []
        self.fail_for: set[UUID] = set()
        self.gate: asyncio.Event | None = None

    async def deliver(self, intent: NotificationIntent) -> bool:
        self.attempts.append(intent)
        if self.gate is not None:
            await self.gate.wait()
        if intent.recipient_id in self.fail_for:
            raise RuntimeError("delivery channel down")
        self.delivered.append(intent)
        return True


class BookingTestCase(unittest.IsolatedAsyncioTestCase):
    """Fresh file-backed SQLite database, a technician, an admin and one device per test."""

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.config = Settings(sweeper_enabled=False, notification_timeout=2.0)
        self.delivery = RecordingDeliveryClient()
        self.runtime = BookingRuntime(
            config=self.config,
            db_engine=make_engine(Path(self._tmp.name) / "booking.db"),
            delivery_client=self.delivery,
        )
        await init_db(self.runtime.db_engine)
        self.lifecycle = self.runtime.lifecycle
        self.system_actor = self.config.system_actor_id

        await self.lifecycle.change_user_role(STAFF_ID, self.system_actor, UserRoleType.TECHNICIAN)
        await self.lifecycle.change_user_role(ADMIN_ID, self.system_actor, UserRoleType.ADMIN)
        self.device = await self.lifecycle.register_device(STAFF_ID, "Oscilloscope", serial_number="OSC-1")

    async def asyncTearDown(self):
        await self.runtime.dispatcher.drain()
        await self.runtime.db_engine.dispose()
        self._tmp.cleanup()

    async def audit_count(self, **filters) -> int:
        stmt = select(func.count()).select_from(AuditLogModel)
        for column, value in filters.items():
            stmt = stmt.where(getattr(AuditLogModel, column) == value)
        async with self.runtime.session_factory() as session:
            return (await session.execute(stmt)).scalar_one()

    async def settle(self):
        """Finish pending deliveries and forget them."""
        await self.runtime.dispatcher.drain()
        self.delivery.attempts.clear()
        self.delivery.delivered.clear()

    async def reserve(self, hours_ahead: float = 1, duration_hours: float = 1, requester=STUDENT_ID, device=None):
        start, end = window(hours_ahead, duration_hours)
        reservation = await self.lifecycle.create_reservation(
            (device or self.device).id, requester, start, end, "lab work"
        )
        # Staff alerts for the new request are covered by their own tests
        await self.settle()
        return reservation

    async def approved(self, hours_ahead: float = 1, duration_hours: float = 1, requester=STUDENT_ID):
        reservation = await self.reserve(hours_ahead, duration_hours, requester)
        return await self.lifecycle.decide_reservation(reservation.id, STAFF_ID, "approve")


def new_id() -> UUID:
    return uuid4()
