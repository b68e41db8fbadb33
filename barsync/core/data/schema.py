"""DuckDB table definitions for instruments and bars."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from duckdb import DuckDBPyConnection


@dataclass(frozen=True)
class ColumnDef:
    """A DuckDB column definition."""

    name: str
    data_type: str
    constraints: Sequence[str] = ()

    def render(self) -> str:
        return " ".join([self.name, self.data_type, *self.constraints])


@dataclass(frozen=True)
class TableSchema:
    """Utility wrapper describing a DuckDB table schema."""

    name: str
    columns: Sequence[ColumnDef]
    primary_key: Sequence[str] = ()
    unique: Sequence[str] = ()

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def create_ddl(self) -> str:
        column_defs = [column.render() for column in self.columns]
        if self.primary_key:
            column_defs.append(f"PRIMARY KEY ({', '.join(self.primary_key)})")
        if self.unique:
            column_defs.append(f"UNIQUE ({', '.join(self.unique)})")
        columns_sql = ",\n                ".join(column_defs)
        return f"""
            CREATE TABLE IF NOT EXISTS {self.name} (
                {columns_sql}
            )
            """.strip()

    def ensure(self, conn: DuckDBPyConnection) -> None:
        """Create the table on the provided connection if it does not exist."""

        conn.execute(self.create_ddl())


INSTRUMENT_ID_SEQUENCE = "instrument_id_seq"

INSTRUMENTS_TABLE = TableSchema(
    name="instruments",
    columns=(
        ColumnDef("id", "INTEGER", (f"DEFAULT nextval('{INSTRUMENT_ID_SEQUENCE}')",)),
        ColumnDef("symbol", "VARCHAR", ("NOT NULL",)),
        ColumnDef("sec_type", "VARCHAR", ("NOT NULL",)),
        ColumnDef("exchange", "VARCHAR", ("NOT NULL",)),
        ColumnDef("currency", "VARCHAR", ("NOT NULL",)),
        ColumnDef("contract_id", "BIGINT"),
        ColumnDef("local_symbol", "VARCHAR"),
        ColumnDef("created_at", "TIMESTAMP", ("NOT NULL",)),
        ColumnDef("updated_at", "TIMESTAMP", ("NOT NULL",)),
    ),
    primary_key=("id",),
    unique=("symbol", "sec_type", "exchange", "currency"),
)

# ``ts`` is UTC epoch seconds.
BARS_TABLE = TableSchema(
    name="bars",
    columns=(
        ColumnDef("instrument_id", "INTEGER", ("NOT NULL",)),
        ColumnDef("timeframe", "VARCHAR", ("NOT NULL",)),
        ColumnDef("ts", "BIGINT", ("NOT NULL",)),
        ColumnDef("open", "DOUBLE", ("NOT NULL",)),
        ColumnDef("high", "DOUBLE", ("NOT NULL",)),
        ColumnDef("low", "DOUBLE", ("NOT NULL",)),
        ColumnDef("close", "DOUBLE", ("NOT NULL",)),
        ColumnDef("volume", "DOUBLE", ("NOT NULL",)),
        ColumnDef("updated_at", "TIMESTAMP", ("NOT NULL",)),
    ),
    primary_key=("instrument_id", "timeframe", "ts"),
)

ALL_TABLES: tuple[TableSchema, ...] = (INSTRUMENTS_TABLE, BARS_TABLE)


def ensure_schema(conn: DuckDBPyConnection) -> None:
    """Create the sequence and tables used by the bar store."""

    conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {INSTRUMENT_ID_SEQUENCE} START 1")
    for table in ALL_TABLES:
        table.ensure(conn)


__all__ = [
    "ALL_TABLES",
    "BARS_TABLE",
    "ColumnDef",
    "INSTRUMENTS_TABLE",
    "TableSchema",
    "ensure_schema",
]
