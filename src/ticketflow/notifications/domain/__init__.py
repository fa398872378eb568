"""
Notifications Domain Layer
==========================

Recipients, delivery results and email templates.
"""

from ticketflow.notifications.domain.entities import (
    TemplateKind,
    Recipient,
    DeliveryResult,
    DeliveryReport,
)
from ticketflow.notifications.domain.templates import RenderedMessage, render

__all__ = [
    "TemplateKind",
    "Recipient",
    "DeliveryResult",
    "DeliveryReport",
    "RenderedMessage",
    "render",
]
