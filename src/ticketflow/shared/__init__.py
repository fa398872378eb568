"""
Shared Kernel Module
====================

Shared infrastructure used across all bounded contexts (tickets, triage,
notifications, pipeline).

DO NOT add ticket, triage or pipeline business logic to the shared kernel.
"""
