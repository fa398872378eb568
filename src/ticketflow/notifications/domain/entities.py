"""
Notification Domain Entities
============================

Recipients, template kinds and per-recipient delivery results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional


class TemplateKind(str, Enum):
    """Email templates the pipeline sends."""
    TICKET_ASSIGNED = "ticket-assigned"
    TICKET_STATUS_CHANGED = "ticket-status-changed"
    TICKET_REASSIGNED = "ticket-reassigned"
    TICKET_UNASSIGNED = "ticket-unassigned"
    SOLUTION_READY = "solution-ready"
    SOLUTION_RATED_THANKYOU = "solution-rated-thankyou"
    SOLUTION_RATED_MODERATOR_NOTICE = "solution-rated-moderator-notice"
    LOW_RATING_ADMIN_ALERT = "low-rating-admin-alert"


@dataclass(frozen=True)
class Recipient:
    """One message to send: who, which template, and the template's data."""
    address: str
    template_kind: TemplateKind
    template_data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryResult:
    address: str
    template_kind: TemplateKind
    success: bool
    error: Optional[str] = None


@dataclass
class DeliveryReport:
    """
    Outcome of one dispatch.

    Failures are data here, never exceptions: callers decide what to do
    with them (the pipeline only logs).
    """
    results: List[DeliveryResult] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0

    @property
    def failures(self) -> List[DeliveryResult]:
        return [r for r in self.results if not r.success]
