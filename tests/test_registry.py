"""Tests for the connection registry."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from keynav.connection import (
    ConnectionRegistry,
    ConnectionStore,
    SentinelConfig,
    StandaloneConfig,
    describe,
)
from keynav.errors import GatewayError, ValidationError


def _registry(tmp_path: Path, factory: Any) -> ConnectionRegistry:
    return ConnectionRegistry(ConnectionStore(tmp_path / "connections.json"), factory)


def test_describe_masks_credentials() -> None:
    standalone = StandaloneConfig(address="redis://:pw@h:6379")
    assert describe(standalone) == "standalone redis://:***@h:6379"
    sentinel = SentinelConfig(master_name="mymaster", sentinels=["redis://:pw@s:26379"])
    assert describe(sentinel) == "sentinel mymaster via redis://:***@s:26379"


@pytest.mark.asyncio
async def test_add_connection_pings_then_persists(
    tmp_path: Path, backend, gateway_factory
) -> None:
    registry = _registry(tmp_path, gateway_factory)

    await registry.add_connection("local", StandaloneConfig(address="h:6379"))

    assert list(registry.list_configs()) == ["local"]
    assert backend.gateways[0].count("ping") == 1
    assert await registry.gateway("local") is backend.gateways[0]


@pytest.mark.asyncio
async def test_add_unreachable_connection_persists_nothing(
    tmp_path: Path, backend, gateway_factory
) -> None:
    backend.reachable = False
    registry = _registry(tmp_path, gateway_factory)

    with pytest.raises(GatewayError) as excinfo:
        await registry.add_connection("local", StandaloneConfig(address="h:6379"))

    assert excinfo.value.code == "connection_error"
    assert registry.list_configs() == {}
    assert backend.gateways[0].closed is True


@pytest.mark.asyncio
async def test_readding_connection_replaces_gateway(
    tmp_path: Path, backend, gateway_factory
) -> None:
    registry = _registry(tmp_path, gateway_factory)
    await registry.add_connection("local", StandaloneConfig(address="a:1"))
    await registry.add_connection("local", StandaloneConfig(address="b:2"))

    first, second = backend.gateways
    assert first.closed is True
    assert await registry.gateway("local") is second
    assert registry.list_configs()["local"] == StandaloneConfig(address="b:2")


@pytest.mark.asyncio
async def test_remove_connection_closes_gateway(tmp_path: Path, backend, gateway_factory) -> None:
    registry = _registry(tmp_path, gateway_factory)
    await registry.add_connection("local", StandaloneConfig(address="a:1"))

    assert await registry.remove_connection("local") is True
    assert await registry.remove_connection("local") is False
    assert backend.gateways[0].closed is True


@pytest.mark.asyncio
async def test_gateway_opens_stored_connection_lazily(
    tmp_path: Path, backend, gateway_factory
) -> None:
    ConnectionStore(tmp_path / "connections.json").save("local", StandaloneConfig(address="a:1"))
    registry = _registry(tmp_path, gateway_factory)

    gateway = await registry.gateway("local")

    assert await registry.gateway("local") is gateway
    assert len(backend.gateways) == 1
    await registry.close_all()
    assert gateway.closed is True


@pytest.mark.asyncio
async def test_gateway_rejects_unknown_and_empty_names(tmp_path: Path, gateway_factory) -> None:
    registry = _registry(tmp_path, gateway_factory)

    with pytest.raises(ValidationError, match="unknown connection 'nope'"):
        await registry.gateway("nope")
    with pytest.raises(ValidationError, match="must not be empty"):
        await registry.add_connection("  ", StandaloneConfig(address="a:1"))


@pytest.mark.asyncio
async def test_check_and_test_report_health(tmp_path: Path, backend, gateway_factory) -> None:
    registry = _registry(tmp_path, gateway_factory)
    await registry.add_connection("local", StandaloneConfig(address="a:1"))

    healthy = await registry.check_connection("local")
    assert healthy.ok is True
    assert healthy.latency_ms == pytest.approx(0.5)

    backend.reachable = False
    unhealthy = await registry.check_connection("local")
    assert unhealthy.ok is False
    assert unhealthy.message == "Connection refused"

    trial = await registry.test_connection_config(StandaloneConfig(address="c:3"))
    assert trial.ok is False
    assert backend.gateways[-1].closed is True
    assert list(registry.list_configs()) == ["local"]
