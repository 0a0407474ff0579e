"""Named connection lifecycle: persist, open, health-check and close gateways."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

from keynav.config.models import GatewaySettings
from keynav.errors import GatewayError, ValidationError

from .codec import mask
from .models import ConnectionConfig, SentinelConfig
from .store import ConnectionStore

if TYPE_CHECKING:
    from keynav.gateway.base import GatewayFactory, KeySpaceGateway

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConnectionHealth:
    """Outcome of a connection health check."""

    ok: bool
    latency_ms: Optional[float] = None
    message: str = ""


def describe(config: ConnectionConfig) -> str:
    """Return a credential-free one-line summary of ``config``."""
    addresses = ", ".join(mask(address) for address in config.addresses())
    if isinstance(config, SentinelConfig):
        return f"sentinel {config.master_name} via {addresses}"
    return f"{config.mode} {addresses}"


class ConnectionRegistry:
    """Connection gateway over a :class:`ConnectionStore`.

    Open gateways are cached per connection name and replaced when a
    connection is re-added under the same name.
    """

    def __init__(
        self,
        store: ConnectionStore,
        gateway_factory: GatewayFactory,
        settings: GatewaySettings | None = None,
    ) -> None:
        self._store = store
        self._factory = gateway_factory
        self._settings = settings or GatewaySettings()
        self._gateways: Dict[str, KeySpaceGateway] = {}

    def list_configs(self) -> Dict[str, ConnectionConfig]:
        """Return every stored configuration keyed by name."""
        return self._store.list_configs()

    async def add_connection(self, name: str, config: ConnectionConfig) -> None:
        """Verify ``config`` is reachable, persist it and make it the active gateway for ``name``.

        Raises:
            ValidationError: If ``name`` is empty.
            GatewayError: If the store cannot be reached; nothing is persisted.
        """
        name = self._require_name(name)
        gateway = self._factory(config, self._settings)
        try:
            await gateway.ping()
        except GatewayError:
            await gateway.close()
            raise
        self._store.save(name, config)
        previous = self._gateways.pop(name, None)
        if previous is not None:
            await previous.close()
        self._gateways[name] = gateway
        LOGGER.info("Saved connection %s (%s)", name, describe(config))

    async def remove_connection(self, name: str) -> bool:
        """Delete ``name`` and close its gateway.

        Returns:
            bool: ``True`` when a stored configuration was removed.
        """
        name = self._require_name(name)
        removed = self._store.delete(name)
        gateway = self._gateways.pop(name, None)
        if gateway is not None:
            await gateway.close()
        if removed:
            LOGGER.info("Removed connection %s", name)
        return removed

    async def check_connection(self, name: str) -> ConnectionHealth:
        """Ping the gateway for ``name`` and report its health."""
        try:
            gateway = await self.gateway(name)
            latency = await gateway.ping()
        except GatewayError as exc:
            return ConnectionHealth(ok=False, message=exc.message)
        return ConnectionHealth(ok=True, latency_ms=latency, message="ok")

    async def test_connection_config(self, config: ConnectionConfig) -> ConnectionHealth:
        """Validate that ``config`` is reachable without persisting it."""
        gateway = self._factory(config, self._settings)
        try:
            latency = await gateway.ping()
        except GatewayError as exc:
            return ConnectionHealth(ok=False, message=exc.message)
        finally:
            await gateway.close()
        return ConnectionHealth(ok=True, latency_ms=latency, message="ok")

    async def gateway(self, name: str) -> KeySpaceGateway:
        """Return the open gateway for ``name``, opening it from the store if needed.

        Raises:
            ValidationError: If ``name`` is empty or not a stored connection.
        """
        name = self._require_name(name)
        existing = self._gateways.get(name)
        if existing is not None:
            return existing
        config = self._store.get(name)
        if config is None:
            raise ValidationError(f"unknown connection '{name}'")
        gateway = self._factory(config, self._settings)
        self._gateways[name] = gateway
        return gateway

    async def close_all(self) -> None:
        """Close every open gateway."""
        gateways = list(self._gateways.values())
        self._gateways.clear()
        for gateway in gateways:
            await gateway.close()

    @staticmethod
    def _require_name(name: str) -> str:
        cleaned = name.strip()
        if not cleaned:
            raise ValidationError("connection name must not be empty")
        return cleaned


__all__ = ["ConnectionHealth", "ConnectionRegistry", "describe"]
