"""
Tickets Module
==============

Ticket, solution and rating lifecycle.

Layers:
- domain: entities and the status state machine
- application: DTOs, repository interfaces, lifecycle service
- infrastructure: SQLAlchemy models and repositories
- interfaces: reporting endpoints
"""
