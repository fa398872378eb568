"""
TicketFlow
==========

Support-ticket processing pipeline: AI triage, skill-based assignment,
notification dispatch and lifecycle bookkeeping.

Bounded contexts:
- tickets: ticket/solution/rating lifecycle and the status state machine
- triage: classifier adapter and moderator matcher
- notifications: templated multi-recipient dispatch
- pipeline: event handlers, step runner and in-process event bus
"""

__version__ = "1.0.0"
