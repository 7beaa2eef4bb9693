"""Logging, error handling and alert transport."""
