"""DuckDB-backed store for instruments and OHLCV bars."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import duckdb
from duckdb import DuckDBPyConnection
from loguru import logger

from barsync.core.data.schema import ensure_schema
from barsync.core.data.storage.duckdb_factory import DuckDBFactory
from barsync.core.exceptions.base import PersistenceError
from barsync.core.models.bars import Bar, UpsertResult
from barsync.core.models.instrument import Instrument, InstrumentDescriptor
from barsync.core.models.market import TimeFrame

_INSTRUMENT_COLUMNS = "id, symbol, sec_type, exchange, currency, contract_id, local_symbol, created_at, updated_at"

_UPSERT_BAR_SQL = """
    INSERT INTO bars (instrument_id, timeframe, ts, open, high, low, close, volume, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (instrument_id, timeframe, ts) DO UPDATE SET
        open = excluded.open,
        high = excluded.high,
        low = excluded.low,
        close = excluded.close,
        volume = excluded.volume,
        updated_at = excluded.updated_at
"""


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _epoch(value: datetime | int | None) -> int | None:
    if value is None or isinstance(value, int):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp())


def _timeframe_value(timeframe: TimeFrame | str) -> str:
    return TimeFrame(timeframe).value


class BarStore:
    """Persistent store adapter.

    Methods are coroutines so callers can await them from the event loop; the
    DuckDB calls themselves run synchronously on a single connection.
    """

    def __init__(
        self,
        factory: DuckDBFactory | None = None,
        *,
        connection: DuckDBPyConnection | None = None,
    ) -> None:
        self._factory = factory or DuckDBFactory()
        self._conn = connection or self._factory.create_connection()
        self._guard("ensure_schema", ensure_schema, self._conn)

    @property
    def connection(self) -> DuckDBPyConnection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[DuckDBPyConnection]:
        """Run the enclosed statements in one transaction, rolling back on error."""

        self._conn.execute("BEGIN TRANSACTION")
        try:
            yield self._conn
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")

    def _guard(self, operation: str, func: Any, *args: Any) -> Any:
        try:
            return func(*args)
        except duckdb.Error as exc:
            logger.bind(operation=operation).error("Store operation failed: {error}", error=str(exc))
            raise PersistenceError(f"{operation} failed: {exc}", operation=operation) from exc

    # Instruments

    def _row_to_instrument(self, row: Sequence[Any]) -> Instrument:
        return Instrument(**dict(zip(_INSTRUMENT_COLUMNS.split(", "), row, strict=True)))

    def _select_instrument(self, descriptor: InstrumentDescriptor) -> Instrument | None:
        row = self._conn.execute(
            f"SELECT {_INSTRUMENT_COLUMNS} FROM instruments "
            "WHERE symbol = ? AND sec_type = ? AND exchange = ? AND currency = ?",
            list(descriptor.identity),
        ).fetchone()
        return self._row_to_instrument(row) if row else None

    async def find_instrument(self, descriptor: InstrumentDescriptor) -> Instrument | None:
        return self._guard("find_instrument", self._select_instrument, descriptor)

    async def get_instrument(self, instrument_id: int) -> Instrument | None:
        def _select() -> Instrument | None:
            row = self._conn.execute(
                f"SELECT {_INSTRUMENT_COLUMNS} FROM instruments WHERE id = ?", [instrument_id]
            ).fetchone()
            return self._row_to_instrument(row) if row else None

        return self._guard("get_instrument", _select)

    async def get_or_create_instrument(self, descriptor: InstrumentDescriptor) -> Instrument:
        """Return the instrument with this identity, creating it on first use."""

        def _get_or_create() -> Instrument:
            existing = self._select_instrument(descriptor)
            if existing is not None:
                return existing
            now = _utcnow()
            row = self._conn.execute(
                "INSERT INTO instruments (symbol, sec_type, exchange, currency, created_at, updated_at) "
                f"VALUES (?, ?, ?, ?, ?, ?) RETURNING {_INSTRUMENT_COLUMNS}",
                [*descriptor.identity, now, now],
            ).fetchone()
            logger.bind(symbol=descriptor.symbol).info("Created instrument {identity}", identity=descriptor.identity)
            return self._row_to_instrument(row)

        return self._guard("get_or_create_instrument", _get_or_create)

    async def attach_contract(
        self,
        instrument_id: int,
        contract_id: int | None,
        local_symbol: str | None = None,
    ) -> Instrument | None:
        """Enrich an instrument; values already attached are never cleared."""

        def _attach() -> Instrument | None:
            row = self._conn.execute(
                "UPDATE instruments SET "
                "contract_id = COALESCE(?, contract_id), "
                "local_symbol = COALESCE(?, local_symbol), "
                "updated_at = ? "
                f"WHERE id = ? RETURNING {_INSTRUMENT_COLUMNS}",
                [contract_id, local_symbol, _utcnow(), instrument_id],
            ).fetchone()
            return self._row_to_instrument(row) if row else None

        return self._guard("attach_contract", _attach)

    async def list_instruments(self) -> list[Instrument]:
        def _select() -> list[Instrument]:
            rows = self._conn.execute(
                f"SELECT {_INSTRUMENT_COLUMNS} FROM instruments ORDER BY symbol, sec_type, exchange, currency"
            ).fetchall()
            return [self._row_to_instrument(row) for row in rows]

        return self._guard("list_instruments", _select)

    # Bars

    async def get_bars(
        self,
        instrument_id: int,
        timeframe: TimeFrame | str,
        start: datetime | int | None = None,
        end: datetime | int | None = None,
    ) -> list[Bar]:
        """Bars of one series inside ``[start, end]``, ascending by timestamp."""

        clauses = ["instrument_id = ?", "timeframe = ?"]
        params: list[Any] = [instrument_id, _timeframe_value(timeframe)]
        start_ts, end_ts = _epoch(start), _epoch(end)
        if start_ts is not None:
            clauses.append("ts >= ?")
            params.append(start_ts)
        if end_ts is not None:
            clauses.append("ts <= ?")
            params.append(end_ts)
        sql = f"SELECT ts, open, high, low, close, volume FROM bars WHERE {' AND '.join(clauses)} ORDER BY ts"

        def _select() -> list[Bar]:
            return [Bar(*row) for row in self._conn.execute(sql, params).fetchall()]

        return self._guard("get_bars", _select)

    async def get_latest_bars(self, instrument_id: int, timeframe: TimeFrame | str, limit: int = 1) -> list[Bar]:
        """The most recent ``limit`` bars, newest first."""

        def _select() -> list[Bar]:
            rows = self._conn.execute(
                "SELECT ts, open, high, low, close, volume FROM bars "
                "WHERE instrument_id = ? AND timeframe = ? ORDER BY ts DESC LIMIT ?",
                [instrument_id, _timeframe_value(timeframe), limit],
            ).fetchall()
            return [Bar(*row) for row in rows]

        return self._guard("get_latest_bars", _select)

    async def upsert_bars(self, instrument_id: int, timeframe: TimeFrame | str, bars: Sequence[Bar]) -> UpsertResult:
        """Insert or overwrite bars keyed by timestamp in a single transaction."""

        if not bars:
            return UpsertResult()
        tf = _timeframe_value(timeframe)
        latest: dict[int, Bar] = {bar.timestamp: bar for bar in bars}
        timestamps = sorted(latest)

        def _upsert() -> UpsertResult:
            with self.transaction() as conn:
                existing = {
                    row[0]
                    for row in conn.execute(
                        "SELECT ts FROM bars WHERE instrument_id = ? AND timeframe = ? AND ts BETWEEN ? AND ?",
                        [instrument_id, tf, timestamps[0], timestamps[-1]],
                    ).fetchall()
                }
                now = _utcnow()
                conn.executemany(
                    _UPSERT_BAR_SQL,
                    [
                        [instrument_id, tf, ts, bar.open, bar.high, bar.low, bar.close, bar.volume, now]
                        for ts, bar in ((ts, latest[ts]) for ts in timestamps)
                    ],
                )
            updated = sum(1 for ts in timestamps if ts in existing)
            return UpsertResult(inserted=len(timestamps) - updated, updated=updated)

        result: UpsertResult = self._guard("upsert_bars", _upsert)
        logger.bind(timeframe=tf).debug(
            "Upserted bars for instrument {instrument_id}: {inserted} inserted, {updated} updated",
            instrument_id=instrument_id,
            inserted=result.inserted,
            updated=result.updated,
        )
        return result

    async def list_series(self) -> list[dict[str, Any]]:
        """Bar count and time span of every stored (instrument, timeframe) series."""

        def _select() -> list[dict[str, Any]]:
            rows = self._conn.execute(
                """
                SELECT i.id, i.symbol, i.sec_type, i.exchange, i.currency, b.timeframe,
                       COUNT(*) AS bar_count, MIN(b.ts) AS earliest, MAX(b.ts) AS latest
                FROM bars b JOIN instruments i ON i.id = b.instrument_id
                GROUP BY i.id, i.symbol, i.sec_type, i.exchange, i.currency, b.timeframe
                ORDER BY i.symbol, b.timeframe
                """
            ).fetchall()
            keys = ("instrument_id", "symbol", "sec_type", "exchange", "currency", "timeframe", "bar_count", "earliest", "latest")
            return [dict(zip(keys, row, strict=True)) for row in rows]

        return self._guard("list_series", _select)

    async def stats(self, symbol: str | None = None) -> dict[str, Any]:
        """Instrument, bar and series counts, optionally for a single symbol."""

        def _select() -> dict[str, Any]:
            where, params = ("WHERE i.symbol = ?", [symbol.upper()]) if symbol else ("", [])
            instruments = self._conn.execute(f"SELECT COUNT(*) FROM instruments i {where}", params).fetchone()[0]
            bar_count = self._conn.execute(
                f"SELECT COUNT(*) FROM bars b JOIN instruments i ON i.id = b.instrument_id {where}", params
            ).fetchone()[0]
            series = self._conn.execute(
                "SELECT COUNT(*) FROM (SELECT DISTINCT b.instrument_id, b.timeframe "
                f"FROM bars b JOIN instruments i ON i.id = b.instrument_id {where})",
                params,
            ).fetchone()[0]
            return {"symbol": symbol.upper() if symbol else None, "instruments": instruments, "bars": bar_count, "series": series}

        return self._guard("stats", _select)

    async def health_check(self) -> bool:
        try:
            self._conn.execute("SELECT 1").fetchone()
        except duckdb.Error as exc:
            logger.warning("Store health check failed: {error}", error=str(exc))
            return False
        return True


__all__ = ["BarStore"]
