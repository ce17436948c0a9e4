"""
Escalation Infrastructure Layer
===============================

YAML policy with hot reload and the periodic sweep scheduler.
"""

from concern_desk.escalation.infrastructure.external import EscalationConfigManager, SweepScheduler

__all__ = ["EscalationConfigManager", "SweepScheduler"]
