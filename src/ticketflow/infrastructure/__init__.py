"""
Infrastructure Clients
======================

Clients for the external collaborators: database, LLM, mail.

Each client is constructed explicitly and owned by the service container,
which opens and closes it with the application lifespan.
"""
