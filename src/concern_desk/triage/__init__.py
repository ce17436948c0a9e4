"""
Triage Module
=============

Bounded Context for estimating a concern's urgency from its text.

Responsibilities:
- Keyword priority detection (urgent, then high, else medium)
- Category and department hint detection
- Sentiment vote and the auto-escalation signal
"""
