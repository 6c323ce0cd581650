"""Shared utilities (cancellation, retry, worker pool, journal, statistics, logging)."""
