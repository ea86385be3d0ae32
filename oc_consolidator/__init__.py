"""Consolidate purchase-order spreadsheets and upsert them into an order store."""

__version__ = "0.1.0"
