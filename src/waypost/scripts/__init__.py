"""Operational scripts runnable with ``python -m waypost.scripts.<name>``."""
