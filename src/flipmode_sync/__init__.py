"""Flipmode sync - athlete/coach research queue and vault reconciliation."""

__version__ = "0.1.0"
