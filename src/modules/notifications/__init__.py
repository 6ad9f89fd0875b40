"""
Notifications Module

Lifecycle events fan out to live sessions (SSE / WebSocket) first and fall
back to Firebase push for users with no live session.
"""
from src.modules.notifications.dispatcher import NotificationDispatcher
from src.modules.notifications.models import DeviceToken, NotificationLog
from src.modules.notifications.router import router
from src.modules.notifications.sessions import SessionRegistry

__all__ = [
    "router",
    "NotificationDispatcher",
    "SessionRegistry",
    "DeviceToken",
    "NotificationLog",
]
