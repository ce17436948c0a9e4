"""
Assignment Application Layer
============================

Workload tracking and cross-department balancing.
"""
