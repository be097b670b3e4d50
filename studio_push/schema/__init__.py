"""Schema package exports."""

from .notifications import NotificationLogRow, NotificationScheduleRow

__all__ = ["NotificationLogRow", "NotificationScheduleRow"]
