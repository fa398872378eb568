"""
Pipeline Module
===============

Event-driven processing of ticket lifecycle events.

Layers:
- domain: typed events, publisher interface
- application: step runner and event handlers
- infrastructure: in-process event bus
- interfaces: event ingress endpoint
"""
