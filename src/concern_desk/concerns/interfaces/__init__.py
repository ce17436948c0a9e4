"""
Concern Interfaces Layer
========================

Interface adapters (controllers) for the concern desk.

This is the outermost layer - handles HTTP requests/responses and
delegates to the orchestrator.
"""

from concern_desk.concerns.interfaces.controllers import (
    escalation_router,
    router as concern_router,
    workload_router,
)

__all__ = ["concern_router", "workload_router", "escalation_router"]
