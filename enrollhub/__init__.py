"""Bulk enrollment import and payment reconciliation."""

__version__ = "1.0.0"
