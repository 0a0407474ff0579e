"""Tests for navigator sessions: scopes, views, preferences and auto-refresh."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from keynav.config.models import NavigatorSettings
from keynav.errors import GatewayError, StateError, ValidationError
from keynav.gateway.base import ScanResult
from keynav.navigator import KeyRecord, KeyType, NavigatorSession
from keynav.navigator.scan import ScanCursorTracker
from keynav.preferences import JsonPreferencesStore, MemoryPreferencesStore


def _seed(backend) -> None:
    backend.put("user:1:name", "string", "ada")
    backend.put("user:1:profile", "hash", {"lang": "en"})
    backend.put("user:2:name", "string", "bob")
    backend.put("queue", "list", ["job"])
    backend.put("doc", "ReJSON-RL", {"a": 1})


@pytest.mark.asyncio
async def test_load_all_resolves_types_and_groups(backend, gateway) -> None:
    _seed(backend)
    session = NavigatorSession(gateway, "local", navigator=NavigatorSettings(page_size=2))
    await session.open()

    state = await session.load_all()

    assert state.complete is True
    assert sorted(session.keys) == sorted(backend.databases[0])
    assert [group.type for group in session.by_type()] == [
        KeyType.STRING,
        KeyType.HASH,
        KeyType.LIST,
        KeyType.JSON,
    ]
    assert KeyRecord("doc", KeyType.JSON) in session.records()
    tree = session.tree()
    assert tree.keys == ["doc", "queue"]
    assert tree.find("user/1").keys == ["user:1:name", "user:1:profile"]
    await session.close()


@pytest.mark.asyncio
async def test_unresolved_types_fall_back_to_unknown(backend, gateway) -> None:
    backend.put("a", "string", "1")
    backend.put("b", "hash", {"f": "v"})
    gateway.fail("type_of", GatewayError("timeout", "timed out"), key="b")
    session = NavigatorSession(gateway, "local")
    await session.open()

    await session.load_more()

    assert session.types == {"a": KeyType.STRING, "b": KeyType.UNKNOWN}
    await session.close()


@pytest.mark.asyncio
async def test_operations_require_open_session(gateway) -> None:
    session = NavigatorSession(gateway, "local")

    assert session.is_open is False
    with pytest.raises(StateError):
        await session.load_more()
    with pytest.raises(StateError):
        await session.select("k")


@pytest.mark.asyncio
async def test_open_rejects_out_of_range_database(gateway) -> None:
    session = NavigatorSession(gateway, "local", navigator=NavigatorSettings(database_count=4))

    with pytest.raises(ValidationError, match="between 0 and 3"):
        await session.open(4)


@pytest.mark.asyncio
async def test_switching_scope_rebuilds_navigator_state(backend, gateway) -> None:
    backend.put("zero", "string", "0")
    backend.put("one", "hash", {"f": "v"}, db=1)
    session = NavigatorSession(gateway, "local")
    await session.open(0)
    await session.load_all()
    await session.select("zero")
    first_loader = session.loader

    await session.switch(database=1)

    assert session.database == 1
    assert session.pattern == "*"
    assert session.keys == []
    assert session.types == {}
    assert session.loader is not first_loader
    assert first_loader.current is None
    await session.load_all()
    assert session.keys == ["one"]
    assert session.types == {"one": KeyType.HASH}
    await session.close()


@pytest.mark.asyncio
async def test_page_arriving_after_switch_is_discarded(backend, gateway) -> None:
    gateway.scan_script = [ScanResult(0, ["old"]), ScanResult(0, ["new"])]
    release = gateway.hold("scan")
    session = NavigatorSession(gateway, "local")
    await session.open(0)

    pending = asyncio.create_task(session.load_more())
    await asyncio.sleep(0)
    await session.switch(pattern="n*")
    release.set()

    assert await pending is None
    assert session.keys == []
    await session.load_more()
    assert session.keys == ["new"]
    await session.close()


@pytest.mark.asyncio
async def test_refresh_restarts_enumeration(backend, gateway) -> None:
    backend.put("a", "string", "1")
    session = NavigatorSession(gateway, "local")
    await session.open()
    await session.load_all()
    backend.put("b", "string", "2")

    page = await session.refresh()

    assert page is not None and page.complete is True
    assert session.keys == ["a", "b"]
    await session.close()


@pytest.mark.asyncio
async def test_select_reveals_key_in_namespace_view(backend, gateway) -> None:
    _seed(backend)
    session = NavigatorSession(gateway, "local")
    await session.open()
    await session.load_all()
    session.set_view_mode("by_namespace")
    session.tree_collapse.collapse("user")
    session.tree_collapse.collapse("user/1")

    loaded = await session.select("user:1:profile")

    assert loaded is not None and loaded.type is KeyType.HASH
    assert session.preferences.last_path == "user/1/profile"
    assert session.tree_collapse.collapsed == frozenset()
    labels = [row.label for row in session.tree_rows()]
    assert "user:1:profile" in labels
    await session.close()


@pytest.mark.asyncio
async def test_delete_key_drops_it_everywhere(backend, gateway) -> None:
    _seed(backend)
    session = NavigatorSession(gateway, "local")
    await session.open()
    await session.load_all()
    await session.select("queue")

    assert await session.delete_key("queue") is True

    assert "queue" not in session.keys
    assert "queue" not in session.types
    assert session.loader.current is None
    assert backend.entry("queue") is None
    assert await session.db_size() == 4
    await session.close()


@pytest.mark.asyncio
async def test_preferences_persist_per_connection_and_database(tmp_path: Path, gateway) -> None:
    store = JsonPreferencesStore(tmp_path / "preferences.json")
    session = NavigatorSession(gateway, "local", preferences_store=store)
    await session.open(2)
    session.set_view_mode("by_namespace")
    session.group_collapse.collapse("hash")
    session.tree_collapse.collapse("user")
    await session.close()

    reopened = NavigatorSession(gateway, "local", preferences_store=store)
    await reopened.open(2)
    assert reopened.preferences.view_mode == "by_namespace"
    assert reopened.group_collapse.collapsed == frozenset({"hash"})
    assert reopened.tree_collapse.collapsed == frozenset({"user"})

    await reopened.switch(database=3)
    assert reopened.preferences.view_mode == "by_type"
    assert reopened.tree_collapse.collapsed == frozenset()
    await reopened.close()

    other = NavigatorSession(gateway, "remote", preferences_store=store)
    await other.open(2)
    assert other.preferences.view_mode == "by_type"
    await other.close()


@pytest.mark.asyncio
async def test_auto_refresh_reloads_and_stops_on_close(backend, gateway) -> None:
    backend.put("a", "string", "1")
    store = MemoryPreferencesStore()
    session = NavigatorSession(gateway, "local", preferences_store=store)
    await session.open()
    await session.load_all()

    session.start_auto_refresh(0.01)
    backend.put("b", "string", "2")
    for _ in range(200):
        if "b" in session.keys:
            break
        await asyncio.sleep(0.01)

    assert session.keys == ["a", "b"]
    assert session.auto_refreshing is True
    await session.close()
    assert session.auto_refreshing is False
    assert store.load("local", 0).auto_refresh.enabled is True


@pytest.mark.asyncio
async def test_auto_refresh_survives_gateway_failures(backend, gateway) -> None:
    session = NavigatorSession(gateway, "local")
    await session.open()
    gateway.fail("scan", GatewayError("timeout", "timed out"))

    session.start_auto_refresh(0.01)
    for _ in range(200):
        if gateway.count("scan") >= 2:
            break
        await asyncio.sleep(0.01)

    assert gateway.count("scan") >= 2
    assert session.auto_refreshing is True
    session.stop_auto_refresh()
    assert session.preferences.auto_refresh.enabled is False
    await session.close()


@pytest.mark.asyncio
async def test_auto_refresh_rejects_non_positive_interval(gateway) -> None:
    session = NavigatorSession(gateway, "local")
    await session.open()

    with pytest.raises(ValidationError):
        session.start_auto_refresh(0)
    await session.close()


@pytest.mark.asyncio
async def test_close_releases_subscriptions(backend, gateway) -> None:
    session = NavigatorSession(gateway, "local")
    await session.open()
    await session.subscriptions.subscribe("events", lambda message: None)

    await session.close()

    assert session.subscriptions.channels == ()
    assert backend.subscribers["events"] == []


@pytest.mark.asyncio
async def test_state_requires_a_started_scope(gateway) -> None:
    session = NavigatorSession(gateway, "local")
    with pytest.raises(StateError, match="not open"):
        session.state

    session._tracker = ScanCursorTracker(gateway, page_size=10)
    with pytest.raises(StateError, match="no scan scope"):
        session.state

    await session.open()
    await session.close()
    with pytest.raises(StateError):
        session.state


@pytest.mark.asyncio
async def test_create_key_joins_matching_listing(backend, gateway) -> None:
    _seed(backend)
    session = NavigatorSession(gateway, "local")
    await session.open(pattern="user:*")
    await session.load_all()
    session.set_view_mode("by_namespace")
    session.tree_collapse.collapse("user")

    loaded = await session.create_key("user:3:tags", KeyType.SET, value="admin", ttl=60)

    assert loaded is not None and loaded.type is KeyType.SET
    assert session.keys[-1] == "user:3:tags"
    assert session.types["user:3:tags"] is KeyType.SET
    assert session.preferences.last_path == "user/3/tags"
    assert "user" not in session.tree_collapse.collapsed
    assert backend.entry("user:3:tags").ttl == 60

    await session.create_key("jobs", KeyType.LIST, value="first")
    assert "jobs" not in session.keys
    assert backend.entry("jobs").value == ["first"]
    await session.close()


@pytest.mark.asyncio
async def test_create_key_refuses_existing_key(backend, gateway) -> None:
    _seed(backend)
    session = NavigatorSession(gateway, "local")
    await session.open()

    with pytest.raises(StateError, match="already exists as a hash key"):
        await session.create_key("user:1:profile", KeyType.STRING, value="x")

    assert backend.entry("user:1:profile").value == {"lang": "en"}
    await session.close()
