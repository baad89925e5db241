"""Stripe webhook ingestion and subscription reconciliation service."""

__version__ = "1.0.0"
