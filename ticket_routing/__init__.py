"""Ticket routing webhook service."""

__version__ = "1.0.0"
