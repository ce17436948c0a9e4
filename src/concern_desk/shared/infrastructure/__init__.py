"""Shared infrastructure: logging and in-process locking."""
