"""
Triage Domain Entities
======================

Result types produced by the priority classifier.
"""

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class PriorityAnalysis:
    """
    Outcome of classifying a concern's text.

    ``auto_escalation`` is true only for urgent text with negative sentiment.
    """
    priority: str
    category: str
    department_hint: str
    sentiment: str
    auto_escalation: bool
    confidence: float
    keywords: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")

    def to_dict(self) -> dict:
        return {
            "priority": self.priority,
            "category": self.category,
            "department_hint": self.department_hint,
            "sentiment": self.sentiment,
            "auto_escalation": self.auto_escalation,
            "confidence": self.confidence,
            "keywords": list(self.keywords),
            "reasons": list(self.reasons),
        }
