"""
Triage Interfaces Layer
=======================

HTTP access to the classifier.
"""

from concern_desk.triage.interfaces.controllers import router as triage_router

__all__ = ["triage_router"]
