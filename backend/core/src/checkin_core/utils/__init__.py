"""Utility helpers shared across check-in services."""
