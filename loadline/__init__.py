"""
Registry round-trip benchmark.

This package generates synthetic container images across a sweep of total
sizes and layer counts, times pushing each one to an OCI registry and pulling
it back, and appends the timings to a CSV file as the sweep progresses.
"""

from .cli import main

__all__ = ["main"]
