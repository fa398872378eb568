"""
Notifications Application Layer
===============================
"""

from ticketflow.notifications.application.dispatcher import NotificationDispatcher

__all__ = ["NotificationDispatcher"]
