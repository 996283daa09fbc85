"""Logging, configuration and error utilities."""
