"""Namespace registry — moderation of prefix registrations."""

__version__ = "0.1.0"
