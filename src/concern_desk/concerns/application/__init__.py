"""
Concern Application Layer
=========================

Use cases over the concern lifecycle.

Contains:
- Ports: repository and collaborator interfaces
- Transactions: serialized, version-checked writes
- Services: submission and lifecycle transitions
- DTOs: API request and response models
"""
