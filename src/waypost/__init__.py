"""Waypost: an ActivityPub federation engine."""

__version__ = "0.1.0"
