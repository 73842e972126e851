"""
Transactional Audit Logging

Append-only audit trail written in the same transaction as the state change
it documents. If the audit write fails the change rolls back; if the change
fails no entry is written.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, BigInteger, Index, Integer, String, Text, Uuid, event, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from shared.database import Base, UTCDateTime
from shared.domain.equipment import utcnow
from shared.domain.exceptions import DatabaseError

logger = structlog.get_logger(__name__)


class AuditAction(str, Enum):
    """Action tags recorded in the audit trail."""

    RESERVATION_CREATED = "reservation_created"
    RESERVATION_APPROVED = "reservation_approved"
    RESERVATION_REJECTED = "reservation_rejected"
    RESERVATION_CANCELLED = "reservation_cancelled"
    RESERVATION_COMPLETED = "reservation_completed"
    ISSUE_REPORTED = "issue_reported"
    ISSUE_STATUS_UPDATED = "issue_status_updated"
    DEVICE_CREATED = "device_created"
    DEVICE_UPDATED = "device_updated"
    DEVICE_STATUS_UPDATED = "device_status_updated"
    DEVICE_DELETED = "device_deleted"
    ROLE_UPDATED = "role_updated"


class AuditEntityType(str, Enum):
    DEVICE = "device"
    RESERVATION = "reservation"
    ISSUE = "issue"
    USER_ROLE = "user_role"


_JSONType = JSON().with_variant(JSONB(), "postgresql")


class AuditLogModel(Base):
    """Audit log database model. Rows are never updated or deleted."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

    sequence_number: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True
    )
    id: Mapped[UUID] = mapped_column(Uuid, unique=True, nullable=False, default=uuid4)
    actor_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    entity_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    old_value: Mapped[dict[str, Any] | None] = mapped_column(_JSONType, nullable=True)
    new_value: Mapped[dict[str, Any] | None] = mapped_column(_JSONType, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, index=True
    )


@event.listens_for(AuditLogModel, "before_update")
def _reject_update(mapper, connection, target):  # noqa: ARG001
    raise DatabaseError("Audit log entries are immutable", operation="update")


@event.listens_for(AuditLogModel, "before_delete")
def _reject_delete(mapper, connection, target):  # noqa: ARG001
    raise DatabaseError("Audit log entries are immutable", operation="delete")


class AuditLogEntry(BaseModel):
    """Read-only projection of an audit log row."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    sequence_number: int
    id: UUID
    actor_id: UUID
    action: str
    entity_type: str
    entity_id: UUID | None = None
    old_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    description: str = ""
    created_at: datetime


class AuditQuery(BaseModel):
    """Filters for the audit read contract."""

    actor_id: UUID | None = None
    action: str | None = None
    entity_type: str | None = None
    entity_id: UUID | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


def snapshot(values: dict[str, Any] | None) -> dict[str, Any] | None:
    """
    Convert a value snapshot into plain JSON types.

    Args:
        values: Field values (UUIDs, datetimes and enums allowed)

    Returns:
        JSON-compatible dict or None
    """
    if values is None:
        return None

    def json_serializer(obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        raise TypeError(f"Cannot serialize {type(obj).__name__} in audit snapshot")

    return json.loads(json.dumps(values, default=json_serializer))


class AuditRecorder:
    """
    Appends audit entries inside the caller's unit of work.

    The recorder never opens or commits a transaction itself.
    """

    async def record(
        self,
        session: AsyncSession,
        actor_id: UUID,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: UUID | None,
        old_value: dict[str, Any] | None,
        new_value: dict[str, Any] | None,
        description: str,
    ) -> AuditLogModel:
        """
        Append one audit entry to the running transaction.

        The entry is flushed immediately so that a failing write aborts the
        enclosing transaction before commit.

        Args:
            session: Session of the running unit of work
            actor_id: User (or system actor) performing the action
            action: Action tag
            entity_type: Type of the affected entity
            entity_id: ID of the affected entity
            old_value: Snapshot before the change
            new_value: Snapshot after the change
            description: Human-readable description

        Returns:
            AuditLogModel: The pending entry
        """
        entry = AuditLogModel(
            actor_id=actor_id,
            action=action.value,
            entity_type=entity_type.value,
            entity_id=entity_id,
            old_value=snapshot(old_value),
            new_value=snapshot(new_value),
            description=description,
        )
        session.add(entry)
        await session.flush()

        logger.debug(
            "Audit entry recorded",
            action=action.value,
            entity_type=entity_type.value,
            entity_id=str(entity_id) if entity_id else None,
            actor_id=str(actor_id),
        )
        return entry

    async def query(self, session: AsyncSession, filters: AuditQuery) -> list[AuditLogEntry]:
        """
        Read audit entries, newest first.

        Args:
            session: Database session
            filters: Actor, action, entity and time range filters

        Returns:
            List of matching entries in reverse-chronological order
        """
        stmt = select(AuditLogModel)

        if filters.actor_id:
            stmt = stmt.where(AuditLogModel.actor_id == filters.actor_id)
        if filters.action:
            stmt = stmt.where(AuditLogModel.action == filters.action)
        if filters.entity_type:
            stmt = stmt.where(AuditLogModel.entity_type == filters.entity_type)
        if filters.entity_id:
            stmt = stmt.where(AuditLogModel.entity_id == filters.entity_id)
        if filters.since:
            stmt = stmt.where(AuditLogModel.created_at >= filters.since)
        if filters.until:
            stmt = stmt.where(AuditLogModel.created_at <= filters.until)

        stmt = (
            stmt.order_by(
                AuditLogModel.created_at.desc(), AuditLogModel.sequence_number.desc()
            )
            .limit(filters.limit)
            .offset(filters.offset)
        )

        result = await session.execute(stmt)
        return [AuditLogEntry.model_validate(row) for row in result.scalars().all()]
