"""
Role-Based Access Control (RBAC)

A single capability check per lifecycle operation, backed by the user_roles table.
"""

from uuid import UUID, uuid4

import structlog
from sqlalchemy import String, Uuid, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from shared.database import Base
from shared.domain.equipment import STAFF_ROLES, UserRoleType
from shared.domain.exceptions import AuthorizationError

logger = structlog.get_logger(__name__)


class UserRoleModel(Base):
    """User role database model. One row per user; no row means student."""

    __tablename__ = "user_roles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRoleType.STUDENT.value)


class RBACService:
    """
    Role-Based Access Control service.

    Roles are read inside the caller's transaction and never cached.
    """

    DEFAULT_ROLE = UserRoleType.STUDENT

    def __init__(self, system_actor_id: UUID | None = None):
        """
        Initialize RBAC service.

        Args:
            system_actor_id: Actor used for unattended and provisioning work;
                it passes every check
        """
        self.system_actor_id = system_actor_id

    async def get_role(self, session: AsyncSession, user_id: UUID) -> UserRoleType:
        """
        Get the role held by a user.

        Args:
            session: Session of the running unit of work
            user_id: User UUID

        Returns:
            UserRoleType: Stored role, or student when none is stored
        """
        result = await session.execute(
            select(UserRoleModel.role).where(UserRoleModel.user_id == user_id)
        )
        role = result.scalar_one_or_none()
        return UserRoleType(role) if role else self.DEFAULT_ROLE

    async def authorize(
        self, session: AsyncSession, actor_id: UUID, *required_roles: UserRoleType
    ) -> bool:
        """
        Check whether the actor holds one of the required roles.

        Args:
            session: Session of the running unit of work
            actor_id: Acting user
            *required_roles: Accepted roles (none = any authenticated actor)

        Returns:
            bool: True if the actor may proceed
        """
        if not required_roles:
            return True
        if self.system_actor_id is not None and actor_id == self.system_actor_id:
            return True

        role = await self.get_role(session, actor_id)
        allowed = role in required_roles

        logger.debug(
            "Authorization evaluated",
            actor_id=str(actor_id),
            role=role.value,
            required=[r.value for r in required_roles],
            allowed=allowed,
        )
        return allowed

    async def is_staff(self, session: AsyncSession, actor_id: UUID) -> bool:
        """Technicians and admins are staff."""
        return await self.authorize(session, actor_id, *STAFF_ROLES)

    async def require(
        self,
        session: AsyncSession,
        actor_id: UUID,
        action: str,
        *required_roles: UserRoleType,
    ) -> None:
        """
        Raise AuthorizationError unless the actor holds a required role.

        Args:
            session: Session of the running unit of work
            actor_id: Acting user
            action: Operation name (for the error context)
            *required_roles: Accepted roles
        """
        if not await self.authorize(session, actor_id, *required_roles):
            raise AuthorizationError(
                message=f"Actor is not allowed to {action.replace('_', ' ')}",
                actor_id=actor_id,
                action=action,
            )
