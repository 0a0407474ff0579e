"""Tests for cursor-based key enumeration."""

from __future__ import annotations

import asyncio

import pytest

from keynav.errors import GatewayError, StateError
from keynav.gateway.base import ScanResult
from keynav.navigator import ScanCursorTracker


@pytest.mark.asyncio
async def test_enumeration_completes_after_cursor_returns_to_zero(gateway) -> None:
    gateway.scan_script = [
        ScanResult(17, ["a", "b"]),
        ScanResult(42, ["c"]),
        ScanResult(0, ["d", "e"]),
    ]
    tracker = ScanCursorTracker(gateway, page_size=2)
    tracker.start(0, "*")

    state = await tracker.run()

    assert state.complete is True
    assert state.steps == 3
    assert state.keys == ["a", "b", "c", "d", "e"]
    assert gateway.count("scan") == 3
    with pytest.raises(StateError, match="already complete"):
        await tracker.step()


@pytest.mark.asyncio
async def test_first_page_with_zero_cursor_completes_in_one_step(gateway) -> None:
    gateway.scan_script = [ScanResult(0, [])]
    tracker = ScanCursorTracker(gateway)
    state = tracker.start(3, "user:*")

    assert state.complete is False
    page = await tracker.step()

    assert page is not None and page.complete is True
    assert state.complete is True
    assert state.keys == []


@pytest.mark.asyncio
async def test_duplicate_keys_are_kept_in_order(gateway) -> None:
    gateway.scan_script = [ScanResult(5, ["a", "b"]), ScanResult(0, ["b", "c"])]
    tracker = ScanCursorTracker(gateway)
    tracker.start(0, "*")

    state = await tracker.run()

    assert state.keys == ["a", "b", "b", "c"]


@pytest.mark.asyncio
async def test_step_requires_started_scan(gateway) -> None:
    with pytest.raises(StateError, match="no scan has been started"):
        await ScanCursorTracker(gateway).step()


@pytest.mark.asyncio
async def test_concurrent_step_is_rejected(gateway) -> None:
    gateway.scan_script = [ScanResult(0, ["a"])]
    release = gateway.hold("scan")
    tracker = ScanCursorTracker(gateway)
    tracker.start(0, "*")

    first = asyncio.create_task(tracker.step())
    await asyncio.sleep(0)
    with pytest.raises(StateError, match="already in flight"):
        await tracker.step()
    release.set()

    page = await first
    assert page is not None and page.keys == ("a",)


@pytest.mark.asyncio
async def test_page_from_superseded_scan_is_discarded(gateway) -> None:
    gateway.scan_script = [ScanResult(9, ["stale"]), ScanResult(0, ["fresh"])]
    release = gateway.hold("scan")
    tracker = ScanCursorTracker(gateway)
    old_state = tracker.start(0, "*")

    pending = asyncio.create_task(tracker.step())
    await asyncio.sleep(0)
    new_state = tracker.start(1, "*")
    release.set()

    assert await pending is None
    assert old_state.keys == []
    assert new_state.keys == []
    assert new_state.generation == old_state.generation + 1

    await tracker.step()
    assert new_state.keys == ["fresh"]
    assert new_state.complete is True


@pytest.mark.asyncio
async def test_failed_step_leaves_state_unchanged(gateway) -> None:
    gateway.scan_script = [ScanResult(8, ["a"]), ScanResult(0, ["b"])]
    tracker = ScanCursorTracker(gateway)
    state = tracker.start(0, "*")
    await tracker.step()

    gateway.fail("scan", GatewayError("timeout", "timed out"))
    with pytest.raises(GatewayError):
        await tracker.step()

    assert state.keys == ["a"]
    assert state.cursor == 8
    assert state.steps == 1
    assert state.in_flight is False

    gateway.clear_failures()
    await tracker.step()
    assert state.keys == ["a", "b"]
    assert state.complete is True


@pytest.mark.asyncio
async def test_out_of_range_cursor_is_a_protocol_error(gateway) -> None:
    gateway.scan_script = [ScanResult(2**64, ["a"])]
    tracker = ScanCursorTracker(gateway)
    state = tracker.start(0, "*")

    with pytest.raises(GatewayError) as excinfo:
        await tracker.step()

    assert excinfo.value.code == "protocol_error"
    assert state.keys == []
    assert state.steps == 0


@pytest.mark.asyncio
async def test_run_stops_after_max_steps(backend, gateway) -> None:
    for index in range(5):
        backend.put(f"key:{index}", "string", "v")
    tracker = ScanCursorTracker(gateway, page_size=2)
    tracker.start(0, "key:*")

    state = await tracker.run(max_steps=2)

    assert state.keys == ["key:0", "key:1", "key:2", "key:3"]
    assert state.complete is False
    state = await tracker.run()
    assert state.keys[-1] == "key:4"
    assert state.complete is True
