"""Logging, event log, duration parsing and exit-code helpers."""
