"""Shared API middleware and error translation."""
