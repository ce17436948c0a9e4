"""
Triage Domain Layer
===================

Pure, deterministic keyword classification. No I/O.
"""

from concern_desk.triage.domain.entities import PriorityAnalysis
from concern_desk.triage.domain.classifier import PriorityClassifier, classify

__all__ = ["PriorityAnalysis", "PriorityClassifier", "classify"]
