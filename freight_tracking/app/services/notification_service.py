"""
Notification Service.

Creates in-app notifications for single users and for the operator desk.
"""

import asyncio
import logging
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select
from typing import Optional, Dict, Any, List, Set

from freight_tracking.app.models.notification import Notification, NotificationType
from freight_tracking.app.models.user import User
from freight_tracking.app.models.enums import UserRole

logger = logging.getLogger(__name__)

OPERATOR_ROLES = (UserRole.OPERATOR, UserRole.ADMIN)


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a single notification."""
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            metadata_payload=metadata
        )
        db.add(notif)
        await db.flush()  # Caller commits
        return notif

    @staticmethod
    async def broadcast(
        db: AsyncSession,
        title: str,
        message: str,
        roles: List[UserRole],
        type: NotificationType = NotificationType.INFO,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """Create one notification per active user holding any of ``roles``."""
        result = await db.execute(
            select(User.id).where(User.role.in_(roles), User.is_active == True)
        )
        user_ids = result.scalars().all()

        notifications = [
            Notification(
                user_id=uid,
                title=title,
                message=message,
                type=type,
                metadata_payload=metadata
            )
            for uid in user_ids
        ]

        if notifications:
            db.add_all(notifications)

        return len(notifications)


class Notifier:
    """
    Best-effort notifier used outside request scope.

    Each notification is written in its own session on a background task so
    the monitoring loops never wait on it; failures are logged and dropped.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory
        self._pending: Set[asyncio.Task] = set()

    def notify_user(
        self,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.TRACKING_ALERT,
        metadata: Optional[Dict[str, Any]] = None
    ) -> asyncio.Task:
        return self._spawn(self._write_user(user_id, title, message, type, metadata))

    def notify_operators(
        self,
        title: str,
        message: str,
        type: NotificationType = NotificationType.TRACKING_ALERT,
        metadata: Optional[Dict[str, Any]] = None
    ) -> asyncio.Task:
        return self._spawn(self._write_operators(title, message, type, metadata))

    async def drain(self) -> None:
        """Wait for every notification still in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write_user(self, user_id, title, message, type, metadata) -> None:
        try:
            async with self._session_factory() as db:
                await NotificationService.create_notification(
                    db, user_id=user_id, title=title, message=message, type=type, metadata=metadata
                )
                await db.commit()
        except Exception:
            logger.warning("Notification to user %s failed", user_id, exc_info=True)

    async def _write_operators(self, title, message, type, metadata) -> None:
        try:
            async with self._session_factory() as db:
                count = await NotificationService.broadcast(
                    db, title=title, message=message, roles=list(OPERATOR_ROLES), type=type, metadata=metadata
                )
                await db.commit()
                logger.debug("Operator broadcast '%s' sent to %d users", title, count)
        except Exception:
            logger.warning("Operator broadcast '%s' failed", title, exc_info=True)
