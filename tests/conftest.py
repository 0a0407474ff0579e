"""Shared fixtures: an in-memory key-space gateway and CLI helpers."""

from __future__ import annotations

import asyncio
import copy
import fnmatch
import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Iterator, Optional

import pytest

from keynav.config.models import GatewaySettings
from keynav.connection.models import ConnectionConfig
from keynav.errors import GatewayError
from keynav.gateway.base import ClusterNodeInfo, Message, ScanResult, order_cluster_nodes


@dataclass
class FakeEntry:
    type: str
    value: Any
    ttl: int = -1


class FakeSubscription:
    """Queue-backed subscription mirroring the gateway protocol."""

    def __init__(self, channel: str, backend: "FakeBackend") -> None:
        self.channel = channel
        self.closed = False
        self._backend = backend
        self._queue: asyncio.Queue[Optional[Message]] = asyncio.Queue()

    def deliver(self, message: Message) -> None:
        self._queue.put_nowait(message)

    async def messages(self) -> AsyncIterator[Message]:
        while not self.closed:
            message = await self._queue.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        self.closed = True
        self._queue.put_nowait(None)
        subscribers = self._backend.subscribers.get(self.channel, [])
        if self in subscribers:
            subscribers.remove(self)


class FakeBackend:
    """Key-value data shared by every fake gateway of one test."""

    def __init__(self) -> None:
        self.databases: dict[int, dict[str, FakeEntry]] = defaultdict(dict)
        self.subscribers: dict[str, list[FakeSubscription]] = defaultdict(list)
        self.pending: dict[str, list[str]] = defaultdict(list)
        self.published: list[tuple[str, str]] = []
        self.reachable = True
        self.gateways: list["FakeGateway"] = []
        self.cluster_nodes: list[ClusterNodeInfo] = []

    def put(self, key: str, key_type: str, value: Any, *, db: int = 0, ttl: int = -1) -> None:
        self.databases[db][key] = FakeEntry(key_type, copy.deepcopy(value), ttl)

    def entry(self, key: str, db: int = 0) -> Optional[FakeEntry]:
        return self.databases[db].get(key)

    def queue_message(self, channel: str, data: str) -> None:
        """Deliver ``data`` to the next subscriber of ``channel``."""
        self.pending[channel].append(data)


class FakeGateway:
    """In-memory :class:`~keynav.gateway.base.KeySpaceGateway`.

    ``hold`` parks an operation until the returned event is set, ``fail``
    makes an operation raise, and ``scan_script`` replaces SCAN with canned
    pages returned in order.
    """

    def __init__(self, backend: Optional[FakeBackend] = None) -> None:
        self.backend = backend or FakeBackend()
        self.calls: list[tuple[str, Optional[str]]] = []
        self.closed = False
        self.scan_script: Optional[list[ScanResult]] = None
        self._holds: dict[tuple[str, Optional[str]], asyncio.Event] = {}
        self._failures: dict[tuple[str, Optional[str]], Exception] = {}

    def hold(self, operation: str, key: Optional[str] = None) -> asyncio.Event:
        event = asyncio.Event()
        self._holds[(operation, key)] = event
        return event

    def fail(self, operation: str, error: Exception, key: Optional[str] = None) -> None:
        self._failures[(operation, key)] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def _enter(self, operation: str, key: Optional[str] = None) -> None:
        self.calls.append((operation, key))
        event = self._holds.get((operation, key)) or self._holds.get((operation, None))
        if event is not None:
            await event.wait()
        error = self._failures.get((operation, key)) or self._failures.get((operation, None))
        if error is not None:
            raise error

    def _db(self, db: int) -> dict[str, FakeEntry]:
        return self.backend.databases[db]

    def _typed(self, key: str, db: int, key_type: str, default: Any) -> FakeEntry:
        entry = self._db(db).get(key)
        if entry is None:
            entry = FakeEntry(key_type, default)
            self._db(db)[key] = entry
        elif entry.type != key_type:
            raise GatewayError("response_error", "WRONGTYPE Operation against a key")
        return entry

    def _drop_if_empty(self, key: str, db: int) -> None:
        entry = self._db(db).get(key)
        if entry is not None and not entry.value:
            del self._db(db)[key]

    # Lifecycle

    async def ping(self) -> float:
        await self._enter("ping")
        if not self.backend.reachable:
            raise GatewayError("connection_error", "Connection refused")
        return 0.5

    async def close(self) -> None:
        self.closed = True

    # Enumeration

    async def scan(self, db: int, cursor: int, pattern: str, count: int) -> ScanResult:
        await self._enter("scan")
        if self.scan_script is not None:
            return self.scan_script.pop(0)
        names = sorted(name for name in self._db(db) if fnmatch.fnmatchcase(name, pattern))
        page = names[cursor : cursor + count]
        following = cursor + count
        return ScanResult(following if following < len(names) else 0, page)

    async def type_of(self, key: str, db: int) -> str:
        await self._enter("type_of", key)
        entry = self._db(db).get(key)
        return entry.type if entry is not None else "none"

    async def db_size(self, db: int) -> int:
        await self._enter("db_size")
        return len(self._db(db))

    # Strings and key lifecycle

    async def get(self, key: str, db: int) -> Optional[str]:
        await self._enter("get", key)
        entry = self._db(db).get(key)
        return None if entry is None else str(entry.value)

    async def set(self, key: str, value: str, db: int, *, keep_ttl: bool = False) -> None:
        await self._enter("set", key)
        previous = self._db(db).get(key)
        ttl = previous.ttl if keep_ttl and previous is not None else -1
        self._db(db)[key] = FakeEntry("string", value, ttl)

    async def delete(self, key: str, db: int) -> int:
        await self._enter("delete", key)
        return 1 if self._db(db).pop(key, None) is not None else 0

    async def ttl(self, key: str, db: int) -> int:
        await self._enter("ttl", key)
        entry = self._db(db).get(key)
        return -2 if entry is None else entry.ttl

    async def expire(self, key: str, seconds: int, db: int) -> bool:
        await self._enter("expire", key)
        entry = self._db(db).get(key)
        if entry is None:
            return False
        entry.ttl = seconds
        return True

    async def persist(self, key: str, db: int) -> bool:
        await self._enter("persist", key)
        entry = self._db(db).get(key)
        if entry is None or entry.ttl < 0:
            return False
        entry.ttl = -1
        return True

    # Collections

    async def hgetall(self, key: str, db: int) -> dict[str, str]:
        await self._enter("hgetall", key)
        entry = self._db(db).get(key)
        return dict(entry.value) if entry is not None else {}

    async def hset(self, key: str, field: str, value: str, db: int) -> int:
        await self._enter("hset", key)
        entry = self._typed(key, db, "hash", {})
        added = field not in entry.value
        entry.value[field] = value
        return int(added)

    async def hdel(self, key: str, field: str, db: int) -> int:
        await self._enter("hdel", key)
        entry = self._db(db).get(key)
        if entry is None or field not in entry.value:
            return 0
        del entry.value[field]
        self._drop_if_empty(key, db)
        return 1

    async def lrange(self, key: str, start: int, stop: int, db: int) -> list[str]:
        await self._enter("lrange", key)
        entry = self._db(db).get(key)
        items = list(entry.value) if entry is not None else []
        end = len(items) + stop if stop < 0 else stop
        return items[start : end + 1]

    async def lpush(self, key: str, value: str, db: int) -> int:
        await self._enter("lpush", key)
        entry = self._typed(key, db, "list", [])
        entry.value.insert(0, value)
        return len(entry.value)

    async def rpop(self, key: str, db: int) -> Optional[str]:
        await self._enter("rpop", key)
        entry = self._db(db).get(key)
        if entry is None or not entry.value:
            return None
        popped = entry.value.pop()
        self._drop_if_empty(key, db)
        return str(popped)

    async def smembers(self, key: str, db: int) -> set[str]:
        await self._enter("smembers", key)
        entry = self._db(db).get(key)
        return set(entry.value) if entry is not None else set()

    async def sadd(self, key: str, member: str, db: int) -> int:
        await self._enter("sadd", key)
        entry = self._typed(key, db, "set", set())
        added = member not in entry.value
        entry.value.add(member)
        return int(added)

    async def srem(self, key: str, member: str, db: int) -> int:
        await self._enter("srem", key)
        entry = self._db(db).get(key)
        if entry is None or member not in entry.value:
            return 0
        entry.value.discard(member)
        self._drop_if_empty(key, db)
        return 1

    async def zrange_withscores(self, key: str, db: int) -> list[tuple[str, float]]:
        await self._enter("zrange", key)
        entry = self._db(db).get(key)
        if entry is None:
            return []
        ranked = sorted(entry.value.items(), key=lambda item: (item[1], item[0].encode("utf-8")))
        return [(member, float(score)) for member, score in ranked]

    async def zadd(self, key: str, member: str, score: float, db: int) -> int:
        await self._enter("zadd", key)
        entry = self._typed(key, db, "zset", {})
        added = member not in entry.value
        entry.value[member] = score
        return int(added)

    async def zrem(self, key: str, member: str, db: int) -> int:
        await self._enter("zrem", key)
        entry = self._db(db).get(key)
        if entry is None or member not in entry.value:
            return 0
        del entry.value[member]
        self._drop_if_empty(key, db)
        return 1

    async def json_get(self, key: str, db: int) -> Any:
        await self._enter("json_get", key)
        entry = self._db(db).get(key)
        return copy.deepcopy(entry.value) if entry is not None else None

    async def json_set(self, key: str, document: Any, db: int) -> None:
        await self._enter("json_set", key)
        self._db(db)[key] = FakeEntry("ReJSON-RL", copy.deepcopy(document))

    # Pub/Sub

    async def publish(self, channel: str, message: str) -> int:
        await self._enter("publish")
        self.backend.published.append((channel, message))
        receivers = list(self.backend.subscribers.get(channel, []))
        for subscription in receivers:
            subscription.deliver(Message(channel=channel, data=message))
        return len(receivers)

    async def subscribe(self, channel: str) -> FakeSubscription:
        await self._enter("subscribe")
        subscription = FakeSubscription(channel, self.backend)
        self.backend.subscribers[channel].append(subscription)
        for data in self.backend.pending.pop(channel, []):
            subscription.deliver(Message(channel=channel, data=data))
        return subscription

    async def cluster_nodes(self) -> list[ClusterNodeInfo]:
        await self._enter("cluster_nodes")
        return order_cluster_nodes(self.backend.cluster_nodes)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def gateway(backend: FakeBackend) -> FakeGateway:
    return FakeGateway(backend)


@pytest.fixture
def gateway_factory(backend: FakeBackend) -> Any:
    """Factory with the registry's signature; every gateway shares ``backend``."""

    def _factory(config: ConnectionConfig, settings: GatewaySettings) -> FakeGateway:
        created = FakeGateway(backend)
        backend.gateways.append(created)
        return created

    return _factory


@pytest.fixture
def fake_redis(
    monkeypatch: pytest.MonkeyPatch, backend: FakeBackend, gateway_factory: Any
) -> FakeBackend:
    """Route every CLI connection to the in-memory backend."""
    monkeypatch.setattr("keynav.cli.create_gateway", gateway_factory)
    return backend


@pytest.fixture
def cli_env(tmp_path: Path) -> dict[str, Optional[str]]:
    """Environment pointing HOME at a temporary directory, without KEYNAV overrides."""
    env: dict[str, Optional[str]] = {"HOME": str(tmp_path)}
    for name in os.environ:
        if name.startswith("KEYNAV_"):
            env[name] = None
    return env


@pytest.fixture(autouse=True)
def _reset_keynav_logger() -> Iterator[None]:
    """Undo handlers installed by CLI invocations so caplog keeps working."""
    yield
    logger = logging.getLogger("keynav")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
