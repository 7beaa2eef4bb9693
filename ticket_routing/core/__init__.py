"""Configuration and domain exceptions."""
