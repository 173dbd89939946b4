"""Cleaning task lifecycle and no-show escalation engine."""

__version__ = "0.1.0"
