"""
Notification Dispatcher
=======================

Sends templated emails to several recipients, isolating failures.

Each recipient is rendered and sent on its own: a template error, a
transport exception or a rejected send becomes a failed DeliveryResult and
the next recipient is still attempted. Nothing is raised to the caller.
"""

from typing import Iterable

from ticketflow.infrastructure.mail import IMailTransport
from ticketflow.notifications.domain import (
    DeliveryReport,
    DeliveryResult,
    Recipient,
    render,
)
from ticketflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class NotificationDispatcher:
    """Best-effort multi-recipient email dispatch."""

    def __init__(self, transport: IMailTransport):
        self._transport = transport

    async def _deliver(self, recipient: Recipient) -> DeliveryResult:
        kind = recipient.template_kind
        if not recipient.address:
            return DeliveryResult(recipient.address, kind, False, "Recipient has no address")

        try:
            message = render(kind, recipient.template_data)
            sent = await self._transport.send(recipient.address, message.subject, message.body)
        except Exception as e:
            return DeliveryResult(recipient.address, kind, False, f"{type(e).__name__}: {e}")

        if not sent:
            return DeliveryResult(recipient.address, kind, False, "Transport rejected message")
        return DeliveryResult(recipient.address, kind, True)

    async def notify(self, recipients: Iterable[Recipient]) -> DeliveryReport:
        """
        Send one message per recipient, in order.

        Returns:
            DeliveryReport with one result per recipient
        """
        report = DeliveryReport()
        for recipient in recipients:
            result = await self._deliver(recipient)
            report.results.append(result)
            if not result.success:
                logger.warning(
                    "Notification failed",
                    extra={
                        "recipient": result.address,
                        "template_kind": result.template_kind.value,
                        "error": result.error,
                    }
                )

        if report.attempted:
            logger.info(
                "Notifications dispatched",
                extra={"attempted": report.attempted, "failed": report.failed}
            )
        return report
