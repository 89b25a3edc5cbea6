"""In-app notification service."""

from sqlalchemy.orm import Session

from homeserve.logging_config import get_logger
from homeserve.notifications.models import Notification, NotificationType
from homeserve.storage.db import Database, db

logger = get_logger(__name__)


def add_notification(
    session: Session,
    user_id: str,
    title: str,
    message: str,
    type: NotificationType = NotificationType.INFO,
    href: str | None = None,
) -> Notification:
    """Stage a notification in the caller's transaction.

    It becomes visible only if that transaction commits.
    """
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        href=href,
        read=False,
    )
    session.add(notification)
    return notification


class NotificationService:
    """Read and acknowledge notifications."""

    def __init__(self, database: Database | None = None):
        self.db = database or db

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        """Newest notifications of a user."""
        with self.db.session() as session:
            query = session.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                query = query.filter(Notification.read.is_(False))
            return query.order_by(
                Notification.created_at.desc(),
                Notification.id.desc(),
            ).limit(limit).all()

    def mark_read(self, user_id: str, notification_id: int) -> bool:
        """Mark one of the user's notifications as read.

        Returns:
            False if the notification does not belong to the user
        """
        with self.db.session() as session:
            notification = session.query(Notification).filter(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            ).first()
            if not notification:
                return False
            notification.read = True

        logger.debug("notification_read", user_id=user_id, notification_id=notification_id)
        return True
