"""In-app notifications."""

from homeserve.notifications.models import Notification, NotificationType

__all__ = ["Notification", "NotificationType"]
