"""
Concerns Module
===============

Bounded Context for the concern (ticket) aggregate.

Responsibilities:
- Submission with reference numbering and automatic assignment
- Lifecycle state machine: approve, reject, status updates,
  student confirmation and dispute
- Manual assignment with audit trail
- Persistence of concerns, users, departments and cross-department assignments
- HTTP API over the orchestrator operations
"""
