"""
Tickets Interfaces Layer
========================

Reporting routes.
"""

from ticketflow.tickets.interfaces.controllers import reports_router

__all__ = ["reports_router"]
