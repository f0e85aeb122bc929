"""Infra layer: durable store contracts and the SQLite implementation."""

from .base import CatalogStore, JobStore
from .storage import SQLiteCatalogStore, SQLiteManager

__all__ = ["CatalogStore", "JobStore", "SQLiteCatalogStore", "SQLiteManager"]
