"""
Escalation Application Layer
============================

Sweep and manual escalation services.
"""

from concern_desk.escalation.application.services import (
    EscalationService,
    IEscalationPolicyProvider,
    SweepResult,
)

__all__ = ["EscalationService", "IEscalationPolicyProvider", "SweepResult"]
