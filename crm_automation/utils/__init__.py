"""Shared utilities (logging, time)."""
