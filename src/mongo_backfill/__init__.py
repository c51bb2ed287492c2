"""Idempotent document backfill for MongoDB collections."""

__version__ = "0.1.0"
