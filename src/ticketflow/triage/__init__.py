"""
Triage Module
=============

AI-assisted classification of new tickets and skill-based assignment.

Layers:
- domain: triage result, fallback, prompt
- application: classifier adapter, moderator matcher
"""
