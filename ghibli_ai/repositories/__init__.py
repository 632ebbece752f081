"""Persistence adapters for subscription state and rate limit counters."""
