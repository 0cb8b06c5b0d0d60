"""Persistence helpers for the task store."""
