"""Retry backoff policies."""
