"""
Escalation Module
=================

Bounded Context for time-based escalation of stalled concerns.

Responsibilities:
- Priority-specific reminder and escalation thresholds (YAML, hot-reloaded)
- Periodic sweep: reminders, reassignment to higher authority, cooldowns
- Manual escalation by department heads and admins
- Background scheduling of the sweep
"""
