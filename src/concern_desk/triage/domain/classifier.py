"""
Priority Classifier
===================

Keyword heuristics turning concern text into a priority, category,
department hint and sentiment.

Keywords match whole words of the lower-cased text, allowing a plural
"s" or "es", so "fee" matches "fees" but not "feedback". Tables are
ordered; category ties go to the earlier entry.
"""

import re
from functools import lru_cache
from typing import Dict, List, Pattern, Sequence, Tuple

from concern_desk.config import ConcernCategory, Priority, Sentiment
from concern_desk.triage.domain.entities import PriorityAnalysis


URGENT_KEYWORDS: Tuple[str, ...] = (
    "urgent", "emergency", "asap", "immediately", "critical", "serious",
    "dangerous", "threat", "violence", "harassment", "bullying", "assault",
    "medical emergency", "hospital", "ambulance", "police", "security",
)

HIGH_KEYWORDS: Tuple[str, ...] = (
    "important", "priority", "deadline", "due", "expired", "overdue",
    "problem", "issue", "broken", "not working", "failed", "error",
)

CATEGORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (ConcernCategory.ACADEMIC, ("grade", "exam", "assignment", "course", "professor", "homework", "gpa")),
    (ConcernCategory.FINANCIAL, ("payment", "tuition", "fee", "money", "cost", "refund", "scholarship")),
    (ConcernCategory.ADMINISTRATIVE, ("enrollment", "registration", "transcript", "diploma", "records")),
    (ConcernCategory.TECHNICAL, ("login", "password", "system", "website", "portal", "error", "bug")),
    (ConcernCategory.HOUSING, ("dormitory", "dorm", "room", "housing", "roommate", "facility")),
    (ConcernCategory.HEALTH, ("health", "medical", "doctor", "clinic", "sick", "medicine")),
    (ConcernCategory.SAFETY, ("safety", "security", "emergency", "danger", "threat", "harassment", "bullying")),
)

# Department codes seeded for each category; general concerns go to academic affairs.
DEPARTMENT_HINTS: Dict[str, str] = {
    ConcernCategory.ACADEMIC: "ACADEMIC_AFFAIRS",
    ConcernCategory.FINANCIAL: "FINANCE",
    ConcernCategory.ADMINISTRATIVE: "REGISTRAR",
    ConcernCategory.TECHNICAL: "IT",
    ConcernCategory.HOUSING: "STUDENT_HOUSING",
    ConcernCategory.HEALTH: "HEALTH_SERVICES",
    ConcernCategory.SAFETY: "CAMPUS_SECURITY",
    ConcernCategory.GENERAL: "ACADEMIC_AFFAIRS",
}

POSITIVE_WORDS: Tuple[str, ...] = (
    "good", "great", "excellent", "amazing", "wonderful", "fantastic",
    "happy", "pleased", "satisfied", "thankful", "grateful", "helpful",
)

NEGATIVE_WORDS: Tuple[str, ...] = (
    "bad", "terrible", "awful", "horrible", "disappointed", "frustrated",
    "angry", "upset", "sad", "worried", "concerned", "problem", "issue",
)


@lru_cache(maxsize=None)
def _keyword_pattern(keyword: str) -> Pattern[str]:
    return re.compile(rf"\b{re.escape(keyword)}(?:s|es)?\b")


def _hits(text: str, keywords: Sequence[str]) -> List[str]:
    return [keyword for keyword in keywords if _keyword_pattern(keyword).search(text)]


class PriorityClassifier:
    """
    Deterministic keyword classifier.

    Identical input always yields an identical ``PriorityAnalysis``, so a
    concern can be reclassified at any time without drift.
    """

    def __init__(
        self,
        urgent_keywords: Sequence[str] = URGENT_KEYWORDS,
        high_keywords: Sequence[str] = HIGH_KEYWORDS,
        category_keywords: Sequence[Tuple[str, Sequence[str]]] = CATEGORY_KEYWORDS,
        department_hints: Dict[str, str] = DEPARTMENT_HINTS,
    ):
        self._urgent = tuple(urgent_keywords)
        self._high = tuple(high_keywords)
        self._categories = tuple((name, tuple(words)) for name, words in category_keywords)
        self._department_hints = dict(department_hints)

    def classify(self, text: str) -> PriorityAnalysis:
        """
        Classify free text (subject and description).

        Args:
            text: Raw concern text, any case

        Returns:
            PriorityAnalysis for the text
        """
        normalized = (text or "").strip().lower()
        if not normalized:
            return PriorityAnalysis(
                priority=Priority.MEDIUM,
                category=ConcernCategory.GENERAL,
                department_hint=self._department_hints[ConcernCategory.GENERAL],
                sentiment=Sentiment.NEUTRAL,
                auto_escalation=False,
                confidence=0.1,
                reasons=["No text to analyse"],
            )

        priority, priority_hits = self._detect_priority(normalized)
        category, category_hits = self._detect_category(normalized)
        sentiment = self._detect_sentiment(normalized)

        reasons = []
        if priority_hits:
            reasons.append(f"{priority.title()} keywords: {', '.join(priority_hits)}")
        if category_hits:
            reasons.append(f"Category '{category}' matched: {', '.join(category_hits)}")
        if sentiment != Sentiment.NEUTRAL:
            reasons.append(f"Sentiment is {sentiment}")

        return PriorityAnalysis(
            priority=priority,
            category=category,
            department_hint=self._department_hints.get(
                category, self._department_hints[ConcernCategory.GENERAL]
            ),
            sentiment=sentiment,
            auto_escalation=priority == Priority.URGENT and sentiment == Sentiment.NEGATIVE,
            confidence=self._confidence(priority_hits, category_hits),
            keywords=priority_hits + [k for k in category_hits if k not in priority_hits],
            reasons=reasons,
        )

    def _detect_priority(self, text: str) -> Tuple[str, List[str]]:
        urgent = _hits(text, self._urgent)
        if urgent:
            return Priority.URGENT, urgent
        high = _hits(text, self._high)
        if high:
            return Priority.HIGH, high
        return Priority.MEDIUM, []

    def _detect_category(self, text: str) -> Tuple[str, List[str]]:
        best, best_hits = ConcernCategory.GENERAL, []
        for name, words in self._categories:
            hits = _hits(text, words)
            # strict comparison keeps the first category on ties
            if len(hits) > len(best_hits):
                best, best_hits = name, hits
        return best, best_hits

    @staticmethod
    def _detect_sentiment(text: str) -> str:
        positive = len(_hits(text, POSITIVE_WORDS))
        negative = len(_hits(text, NEGATIVE_WORDS))
        if positive > negative:
            return Sentiment.POSITIVE
        if negative > positive:
            return Sentiment.NEGATIVE
        return Sentiment.NEUTRAL

    @staticmethod
    def _confidence(priority_hits: List[str], category_hits: List[str]) -> float:
        if not priority_hits:
            return 0.5
        score = 0.6 + 0.1 * (len(priority_hits) - 1) + 0.05 * min(len(category_hits), 3)
        return round(min(0.95, score), 2)


_default_classifier = PriorityClassifier()


def classify(text: str) -> PriorityAnalysis:
    """Classify with the default keyword tables."""
    return _default_classifier.classify(text)
