"""Inventory tracking service with validated backup import/export."""

__version__ = "0.1.0"
