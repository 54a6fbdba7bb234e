"""Logging and platform helpers."""
