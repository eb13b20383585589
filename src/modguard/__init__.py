"""Modguard: AI-assisted chat moderation."""

__version__ = "0.1.0"
