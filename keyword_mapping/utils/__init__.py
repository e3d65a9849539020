"""Shared helpers for keyword text handling, rate limiting and formatting."""
