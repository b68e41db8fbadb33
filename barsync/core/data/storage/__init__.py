"""Persistent storage for instruments and bars."""

from barsync.core.data.storage.duckdb_factory import DuckDBFactory, DuckDBFactoryConfig
from barsync.core.data.storage.repository import BarStore

__all__ = ["BarStore", "DuckDBFactory", "DuckDBFactoryConfig"]
