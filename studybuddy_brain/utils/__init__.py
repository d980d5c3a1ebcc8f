"""Logging, tracing and locking helpers."""
