"""Contracts of the external collaborators driven by the scheduler."""

from __future__ import annotations

from typing import Any, Protocol

from barsync.core.models.results import ActiveSetup, KeepAliveResult


class ActiveSetupSource(Protocol):
    """Provides the active trading setups whose instruments are kept fresh."""

    async def list_active_setups(self) -> list[ActiveSetup]: ...


class StrategySignalCollaborator(Protocol):
    """Recomputes strategy signals for one setup; returns ``{"total_signals": n}``."""

    async def calculate_for_setup(self, setup_id: int) -> dict[str, Any]: ...


class ConnectionHealthCollaborator(Protocol):
    """Checks the upstream connection and reconnects when needed."""

    async def perform_check(self) -> KeepAliveResult: ...


class StaticSetupSource:
    """Fixed list of setups, used by ``barsync schedule run --symbol``."""

    def __init__(self, setups: list[ActiveSetup]) -> None:
        self._setups = list(setups)

    async def list_active_setups(self) -> list[ActiveSetup]:
        return list(self._setups)


class UpstreamHealthCheck:
    """Keep-alive check backed by the upstream ``/health`` endpoint."""

    def __init__(self, upstream: Any, profile_name: str | None = None) -> None:
        self._upstream = upstream
        self._profile_name = profile_name

    async def perform_check(self) -> KeepAliveResult:
        connected = await self._upstream.health()
        return KeepAliveResult(
            checked=True,
            connected=connected,
            profile_name=self._profile_name,
            message="Connection healthy" if connected else "Upstream health check failed",
        )


__all__ = [
    "ActiveSetupSource",
    "ConnectionHealthCollaborator",
    "StaticSetupSource",
    "StrategySignalCollaborator",
    "UpstreamHealthCheck",
]
