"""
Shared Kernel Module
====================

Shared infrastructure and domain elements used across all bounded contexts
(concerns, triage, assignment, escalation).

Architecture Pattern: Modular Monolith
- Each module is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add concern lifecycle or assignment rules to the shared kernel.
"""
