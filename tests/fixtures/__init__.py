"""Test fixtures for genstream."""
