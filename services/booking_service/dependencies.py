"""
Booking Service Dependencies

Wiring of the lifecycle engine and its collaborators, plus the FastAPI
dependencies that hand them to request handlers.
"""

from collections.abc import AsyncGenerator
from uuid import UUID

import structlog
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from services.booking_service.lifecycle import LifecycleEngine
from services.booking_service.notifications import (
    DeliveryClient,
    HttpDeliveryClient,
    LoggingDeliveryClient,
    NotificationDispatcher,
)
from services.booking_service.repository import BookingRepository
from services.booking_service.sweeper import ExpirySweeper
from shared.config import Settings, settings
from shared.database import close_db, create_engine_for, create_session_factory, init_db
from shared.events.stream import EventStream
from shared.security.audit import AuditRecorder
from shared.security.rbac import RBACService

logger = structlog.get_logger(__name__)


class BookingRuntime:
    """Everything one running booking service instance needs."""

    def __init__(
        self,
        config: Settings | None = None,
        db_engine: AsyncEngine | None = None,
        delivery_client: DeliveryClient | None = None,
    ):
        """
        Build the runtime.

        Args:
            config: Settings (default: global settings)
            db_engine: Engine to use (default: one built from the database URL)
            delivery_client: Notification channel (default: HTTP when an
                endpoint is configured, logging otherwise)
        """
        self.config = config or settings
        self.db_engine = db_engine or create_engine_for(self.config.async_database_url)
        self.session_factory = create_session_factory(self.db_engine)

        if delivery_client is None:
            if self.config.notification_endpoint:
                delivery_client = HttpDeliveryClient(
                    self.config.notification_endpoint,
                    api_key=self.config.notification_api_key,
                    timeout=self.config.notification_timeout,
                )
            else:
                delivery_client = LoggingDeliveryClient()

        self.event_stream = EventStream("booking")
        self.dispatcher = NotificationDispatcher(
            delivery_client, timeout=self.config.notification_timeout
        )
        self.event_stream.register(self.dispatcher)

        self.audit = AuditRecorder()
        self.rbac = RBACService(system_actor_id=self.config.system_actor_id)
        self.lifecycle = LifecycleEngine(
            self.session_factory,
            self.event_stream,
            audit=self.audit,
            rbac=self.rbac,
            config=self.config,
        )
        self.sweeper = ExpirySweeper(self.lifecycle, self.config.sweep_interval_seconds)

    async def startup(self) -> None:
        await init_db(self.db_engine)
        if self.config.sweeper_enabled:
            self.sweeper.start()
        logger.info("Booking runtime started", sweeper_enabled=self.config.sweeper_enabled)

    async def shutdown(self) -> None:
        await self.sweeper.stop()
        await self.dispatcher.aclose()
        await close_db(self.db_engine)
        logger.info("Booking runtime stopped")


def get_runtime(request: Request) -> BookingRuntime:
    return request.app.state.runtime


def get_lifecycle(runtime: BookingRuntime = Depends(get_runtime)) -> LifecycleEngine:
    return runtime.lifecycle


async def get_session(
    runtime: BookingRuntime = Depends(get_runtime),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for a read-only session.

    Yields:
        AsyncSession: Database session
    """
    async with runtime.session_factory() as session:
        yield session


async def get_repository(db: AsyncSession = Depends(get_session)) -> BookingRepository:
    return BookingRepository(db)


async def get_actor_id(x_actor_id: UUID = Header(..., alias="X-Actor-Id")) -> UUID:
    """
    Identity of the caller.

    Authentication happens upstream; the gateway forwards the verified
    user ID in the X-Actor-Id header.
    """
    return x_actor_id
