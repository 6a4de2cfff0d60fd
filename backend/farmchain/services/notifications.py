"""Fire-and-forget notification delivery.

Notifications are stored as rows for the in-app bell; ``user_id == "ALL"``
broadcasts to every user holding ``role``.  A blank user id is dropped
silently, e.g. for a batch approved before a distributor was assigned.
"""

import logging
from typing import Protocol

from sqlalchemy.ext.asyncio import async_sessionmaker

from farmchain.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def notify(
        self,
        user_id: str | None,
        role: str,
        title: str,
        body: str,
        notification_type: str,
        entity_id: str | None = None,
    ) -> None: ...


class SqlNotificationSink:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def notify(
        self,
        user_id: str | None,
        role: str,
        title: str,
        body: str,
        notification_type: str,
        entity_id: str | None = None,
    ) -> None:
        if not user_id:
            logger.debug("Dropping %s notification with no recipient", notification_type)
            return

        async with self._session_factory() as session:
            try:
                session.add(Notification(
                    user_id=user_id,
                    user_role=role,
                    title=title,
                    message=body,
                    notification_type=notification_type,
                    entity_id=entity_id,
                    is_read=False,
                ))
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info("Notified %s/%s: %s", role, user_id, notification_type)
