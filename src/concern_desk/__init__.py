"""
Concern Desk
============

Assignment and escalation orchestrator for a university support desk.

Bounded contexts:
- concerns: concern aggregate, lifecycle state machine, persistence, API
- triage: keyword priority classifier
- assignment: workload tracking, handler selection, cross-department balancing
- escalation: time-based escalation sweep and its scheduler
"""

__version__ = "1.0.0"
