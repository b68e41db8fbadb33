"""Instrument identity models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, field_validator

from barsync.core.models.market import DEFAULT_CURRENCY, DEFAULT_EXCHANGE, DEFAULT_SEC_TYPE


class InstrumentDescriptor(BaseModel):
    """Natural identity of an instrument: (symbol, sec_type, exchange, currency)."""

    symbol: str
    sec_type: str = DEFAULT_SEC_TYPE
    exchange: str = DEFAULT_EXCHANGE
    currency: str = DEFAULT_CURRENCY

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol must be a non-empty string")
        return value

    @field_validator("sec_type", "exchange", "currency")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def identity(self) -> tuple[str, str, str, str]:
        return (self.symbol, self.sec_type, self.exchange, self.currency)


class Instrument(InstrumentDescriptor):
    """Persisted instrument, optionally enriched with the upstream contract id."""

    id: int
    contract_id: int | None = None
    local_symbol: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def descriptor(self) -> InstrumentDescriptor:
        return InstrumentDescriptor(
            symbol=self.symbol,
            sec_type=self.sec_type,
            exchange=self.exchange,
            currency=self.currency,
        )


__all__ = ["InstrumentDescriptor", "Instrument"]
