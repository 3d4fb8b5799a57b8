"""Webhook authorization, deduplication and reconciliation for the marketplace backend."""

__version__ = "0.1.0"
