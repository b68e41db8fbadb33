"""Create configured DuckDB connections for the bar store."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

import duckdb
from duckdb import DuckDBPyConnection

from barsync.core.config.settings import StorageConfig

MEMORY_DATABASE = ":memory:"


@dataclass(frozen=True)
class DuckDBFactoryConfig:
    """Configuration applied to connections produced by the factory."""

    database: str | Path = MEMORY_DATABASE
    read_only: bool = False
    pragmas: Mapping[str, object] = field(default_factory=lambda: {"threads": 1})

    @classmethod
    def from_storage(cls, storage: StorageConfig) -> "DuckDBFactoryConfig":
        pragmas: dict[str, object] = {"threads": storage.threads or 1}
        if storage.memory_limit:
            pragmas["memory_limit"] = storage.memory_limit
        return cls(database=storage.database, read_only=storage.read_only, pragmas=pragmas)


class DuckDBFactory:
    """Factory that yields configured DuckDB connections."""

    def __init__(self, config: DuckDBFactoryConfig | None = None) -> None:
        self._config = config or DuckDBFactoryConfig()

    @property
    def database(self) -> str:
        return str(self._config.database)

    def create_connection(self) -> DuckDBPyConnection:
        database = self.database
        if database != MEMORY_DATABASE and not self._config.read_only:
            Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
            database = str(Path(database).expanduser())
        conn = duckdb.connect(database=database, read_only=self._config.read_only)
        self._apply_pragmas(conn)
        return conn

    @contextmanager
    def connection(self) -> Iterator[DuckDBPyConnection]:
        conn = self.create_connection()
        try:
            yield conn
        finally:
            conn.close()

    def _apply_pragmas(self, conn: DuckDBPyConnection) -> None:
        for setting, value in self._config.pragmas.items():
            rendered = f"'{value}'" if isinstance(value, str) else value
            conn.execute(f"SET {setting}={rendered}")


__all__ = ["DuckDBFactory", "DuckDBFactoryConfig", "MEMORY_DATABASE"]
