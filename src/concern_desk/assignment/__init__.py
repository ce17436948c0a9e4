"""
Assignment Module
=================

Bounded Context for choosing who handles a concern.

Responsibilities:
- Workload tracking derived from open concerns (no stored counters)
- Handler selection: in-department, cross-department and emergency pools
- Escalation pools per authority level
- Department load analysis and cross-department rebalancing
"""
