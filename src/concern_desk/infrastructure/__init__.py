"""Infrastructure adapters shared by all modules."""
