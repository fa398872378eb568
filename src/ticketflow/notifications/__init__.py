"""
Notifications Module
====================

Templated email notifications with per-recipient delivery results.

Layers:
- domain: template kinds, recipients, delivery report, templates
- application: dispatcher
"""
