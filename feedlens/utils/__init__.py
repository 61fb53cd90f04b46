"""Shared utilities: logging and the exception hierarchy."""
