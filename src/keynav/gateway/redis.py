"""Key-space gateway backed by ``redis.asyncio``.

One gateway serves one stored connection. Standalone and sentinel
deployments hold one client per logical database; cluster deployments only
expose database 0 and enumerate keys by walking every primary in turn.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, NamedTuple, Optional, TypeVar
from urllib.parse import unquote, urlsplit

import redis.asyncio as aioredis
from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.asyncio.sentinel import Sentinel
from redis.exceptions import AuthenticationError, RedisError, ResponseError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from keynav.config.models import GatewaySettings
from keynav.connection.codec import mask, with_scheme
from keynav.connection.models import (
    ClusterConfig,
    ConnectionConfig,
    SentinelConfig,
    StandaloneConfig,
)
from keynav.errors import GatewayError

from .base import ClusterNodeInfo, Message, ScanResult, order_cluster_nodes

LOGGER = logging.getLogger(__name__)

DEFAULT_PORT = 6379
DEFAULT_SENTINEL_PORT = 26379

T = TypeVar("T")


class Endpoint(NamedTuple):
    """Connection parameters extracted from one address."""

    host: str
    port: int
    username: Optional[str]
    password: Optional[str]
    ssl: bool


def parse_endpoint(address: str, *, default_port: int = DEFAULT_PORT) -> Endpoint:
    """Split an address into the keyword arguments expected by redis clients.

    Raises:
        GatewayError: If the address has no host or an invalid port.
    """
    try:
        parts = urlsplit(with_scheme(address))
        port = parts.port
    except ValueError as exc:
        raise GatewayError("invalid_address", f"{mask(address)}: {exc}") from exc
    if not parts.hostname:
        raise GatewayError("invalid_address", f"{mask(address)}: missing host")
    return Endpoint(
        host=parts.hostname,
        port=port or default_port,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
        ssl=parts.scheme == "rediss",
    )


def translate_error(exc: RedisError) -> GatewayError:
    """Map a redis-py exception onto a coded :class:`GatewayError`."""
    if isinstance(exc, AuthenticationError):
        code = "auth_error"
    elif isinstance(exc, RedisTimeoutError):
        code = "timeout"
    elif isinstance(exc, RedisConnectionError):
        code = "connection_error"
    elif isinstance(exc, ResponseError):
        code = "response_error"
    else:
        code = "redis_error"
    return GatewayError(code, str(exc) or exc.__class__.__name__)


def decode_error(operation: str, exc: UnicodeDecodeError) -> GatewayError:
    """Report a reply holding bytes that are not valid UTF-8."""
    return GatewayError(
        "decode_error",
        f"{operation} returned data that is not valid UTF-8 ({exc.reason} at byte {exc.start})",
    )


def nodes_from_response(raw: Mapping[str, Any]) -> list[ClusterNodeInfo]:
    """Build ordered node records from the parsed CLUSTER NODES reply.

    redis-py keys the reply by ``host:port``; each entry carries a comma
    separated ``flags`` string, ``master_id`` (``-`` for masters) and ``slots``
    as [start, end] or [slot] lists.
    """
    nodes: list[ClusterNodeInfo] = []
    for address, info in raw.items():
        raw_flags = info.get("flags") or ""
        flags = raw_flags.split(",") if isinstance(raw_flags, str) else list(raw_flags)
        master_id = str(info.get("master_id") or "-")
        slots = [
            span if isinstance(span, str) else "-".join(str(bound) for bound in span)
            for span in info.get("slots") or []
        ]
        nodes.append(
            ClusterNodeInfo(
                node_id=str(info.get("node_id", "")),
                address=str(address),
                flags=tuple(flag for flag in flags if flag),
                master_id=None if master_id == "-" else master_id,
                slots=tuple(slots),
                connected=bool(info.get("connected", False)),
            )
        )
    return order_cluster_nodes(nodes)


class RedisSubscription:
    """Channel subscription over a dedicated pub/sub connection."""

    def __init__(self, channel: str, pubsub: Any) -> None:
        self.channel = channel
        self._pubsub = pubsub
        self._closed = False

    async def messages(self) -> AsyncIterator[Message]:
        while not self._closed:
            try:
                raw = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError as exc:
                raise translate_error(exc) from exc
            except UnicodeDecodeError as exc:
                raise decode_error(f"SUBSCRIBE {self.channel}", exc) from exc
            if raw is None or raw.get("type") != "message":
                continue
            yield Message(channel=str(raw["channel"]), data=str(raw["data"]))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self.channel)
        except RedisError as exc:
            LOGGER.debug("Unsubscribe from %s failed: %s", self.channel, exc)
        await self._pubsub.aclose()


class RedisGateway:
    """Gateway implementation for standalone, cluster and sentinel deployments."""

    def __init__(self, config: ConnectionConfig, settings: GatewaySettings | None = None) -> None:
        """Prepare a gateway; clients are created lazily on first use.

        Args:
            config: Validated connection configuration.
            settings: Retry and timeout settings.
        """
        self._config = config
        self._settings = settings or GatewaySettings()
        self._clients: dict[int, aioredis.Redis] = {}
        self._cluster: Optional[RedisCluster] = None
        self._node_clients: dict[str, aioredis.Redis] = {}
        self._sentinel: Optional[Sentinel] = None

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    # Lifecycle --------------------------------------------------------

    async def ping(self) -> float:
        started = time.perf_counter()
        if isinstance(self._config, ClusterConfig):
            await self._call("PING", lambda: self._cluster_client().ping())
        else:
            await self._call("PING", lambda: self._client(0).ping())
        return (time.perf_counter() - started) * 1000.0

    async def close(self) -> None:
        clients: list[Any] = [*self._clients.values(), *self._node_clients.values()]
        if self._cluster is not None:
            clients.append(self._cluster)
        if self._sentinel is not None:
            clients.extend(self._sentinel.sentinels)
        self._clients.clear()
        self._node_clients.clear()
        self._cluster = None
        self._sentinel = None
        for client in clients:
            try:
                await client.aclose()
            except RedisError as exc:
                LOGGER.debug("Closing client failed: %s", exc)

    # Enumeration ------------------------------------------------------

    async def scan(self, db: int, cursor: int, pattern: str, count: int) -> ScanResult:
        if isinstance(self._config, ClusterConfig):
            self._require_db_zero(db)
            return await self._call("SCAN", lambda: self._cluster_scan(cursor, pattern, count))
        client = self._client(db)
        next_cursor, keys = await self._call(
            "SCAN", lambda: client.scan(cursor, match=pattern, count=count)
        )
        return ScanResult(int(next_cursor), [str(key) for key in keys])

    async def _cluster_scan(self, cursor: int, pattern: str, count: int) -> ScanResult:
        # Composite cursor: node_cursor * primaries + node_index.
        cluster = self._cluster_client()
        await cluster.initialize()
        primaries = sorted(cluster.get_primaries(), key=lambda node: node.name)
        if not primaries:
            raise GatewayError("cluster_error", "cluster reports no primary nodes")
        total = len(primaries)
        index, node_cursor = cursor % total, cursor // total
        client = self._node_client(primaries[index])
        next_cursor, keys = await client.scan(node_cursor, match=pattern, count=count)
        if next_cursor:
            composite = int(next_cursor) * total + index
        elif index + 1 < total:
            composite = index + 1
        else:
            composite = 0
        return ScanResult(composite, [str(key) for key in keys])

    async def type_of(self, key: str, db: int) -> str:
        client = self._client(db)
        return str(await self._call("TYPE", lambda: client.type(key)))

    async def db_size(self, db: int) -> int:
        client = self._client(db)
        return int(await self._call("DBSIZE", lambda: client.dbsize()))

    # Strings and key lifecycle ----------------------------------------

    async def get(self, key: str, db: int) -> Optional[str]:
        client = self._client(db)
        return await self._call("GET", lambda: client.get(key))

    async def set(self, key: str, value: str, db: int, *, keep_ttl: bool = False) -> None:
        client = self._client(db)
        if keep_ttl:
            await self._call("SET", lambda: client.set(key, value, keepttl=True))
        else:
            await self._call("SET", lambda: client.set(key, value))

    async def delete(self, key: str, db: int) -> int:
        client = self._client(db)
        return int(await self._call("DEL", lambda: client.delete(key)))

    async def ttl(self, key: str, db: int) -> int:
        client = self._client(db)
        return int(await self._call("TTL", lambda: client.ttl(key)))

    async def expire(self, key: str, seconds: int, db: int) -> bool:
        client = self._client(db)
        return bool(await self._call("EXPIRE", lambda: client.expire(key, seconds)))

    async def persist(self, key: str, db: int) -> bool:
        client = self._client(db)
        return bool(await self._call("PERSIST", lambda: client.persist(key)))

    # Collections ------------------------------------------------------

    async def hgetall(self, key: str, db: int) -> dict[str, str]:
        client = self._client(db)
        return dict(await self._call("HGETALL", lambda: client.hgetall(key)))

    async def hset(self, key: str, field: str, value: str, db: int) -> int:
        client = self._client(db)
        return int(await self._call("HSET", lambda: client.hset(key, field, value)))

    async def hdel(self, key: str, field: str, db: int) -> int:
        client = self._client(db)
        return int(await self._call("HDEL", lambda: client.hdel(key, field)))

    async def lrange(self, key: str, start: int, stop: int, db: int) -> list[str]:
        client = self._client(db)
        return list(await self._call("LRANGE", lambda: client.lrange(key, start, stop)))

    async def lpush(self, key: str, value: str, db: int) -> int:
        client = self._client(db)
        return int(await self._call("LPUSH", lambda: client.lpush(key, value)))

    async def rpop(self, key: str, db: int) -> Optional[str]:
        client = self._client(db)
        return await self._call("RPOP", lambda: client.rpop(key))

    async def smembers(self, key: str, db: int) -> set[str]:
        client = self._client(db)
        return set(await self._call("SMEMBERS", lambda: client.smembers(key)))

    async def sadd(self, key: str, member: str, db: int) -> int:
        client = self._client(db)
        return int(await self._call("SADD", lambda: client.sadd(key, member)))

    async def srem(self, key: str, member: str, db: int) -> int:
        client = self._client(db)
        return int(await self._call("SREM", lambda: client.srem(key, member)))

    async def zrange_withscores(self, key: str, db: int) -> list[tuple[str, float]]:
        client = self._client(db)
        pairs = await self._call("ZRANGE", lambda: client.zrange(key, 0, -1, withscores=True))
        return [(str(member), float(score)) for member, score in pairs]

    async def zadd(self, key: str, member: str, score: float, db: int) -> int:
        client = self._client(db)
        return int(await self._call("ZADD", lambda: client.zadd(key, {member: score})))

    async def zrem(self, key: str, member: str, db: int) -> int:
        client = self._client(db)
        return int(await self._call("ZREM", lambda: client.zrem(key, member)))

    async def json_get(self, key: str, db: int) -> Any:
        client = self._client(db)
        document = await self._call("JSON.GET", lambda: client.json().get(key, "$"))
        # Root-path queries return a one-element array.
        if isinstance(document, list) and len(document) == 1:
            return document[0]
        return document

    async def json_set(self, key: str, document: Any, db: int) -> None:
        client = self._client(db)
        await self._call("JSON.SET", lambda: client.json().set(key, "$", document))

    # Pub/Sub ----------------------------------------------------------

    async def publish(self, channel: str, message: str) -> int:
        if isinstance(self._config, ClusterConfig):
            cluster = self._cluster_client()
            return int(await self._call("PUBLISH", lambda: cluster.publish(channel, message)))
        client = self._client(0)
        return int(await self._call("PUBLISH", lambda: client.publish(channel, message)))

    async def subscribe(self, channel: str) -> RedisSubscription:
        if isinstance(self._config, ClusterConfig):
            # Cluster pub/sub is broadcast, so any seed node can serve the subscription.
            endpoint = parse_endpoint(self._config.seeds[0])
            pubsub = self._new_client(endpoint, db=0).pubsub()
        else:
            pubsub = self._client(0).pubsub()
        await self._call("SUBSCRIBE", lambda: pubsub.subscribe(channel))
        LOGGER.debug("Subscribed to channel %s", channel)
        return RedisSubscription(channel, pubsub)

    # Topology ---------------------------------------------------------

    async def cluster_nodes(self) -> list[ClusterNodeInfo]:
        if not isinstance(self._config, ClusterConfig):
            return []
        cluster = self._cluster_client()
        raw = await self._call("CLUSTER NODES", lambda: cluster.cluster_nodes())
        return nodes_from_response(raw)

    # Internal helpers -------------------------------------------------

    async def _call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await func()
            except AuthenticationError as exc:
                raise translate_error(exc) from exc
            except (RedisConnectionError, RedisTimeoutError) as exc:
                if attempt > self._settings.retries:
                    raise translate_error(exc) from exc
                LOGGER.warning(
                    "%s failed (attempt %d of %d), retrying: %s",
                    operation,
                    attempt,
                    self._settings.retries + 1,
                    exc,
                )
                await asyncio.sleep(self._settings.retry_delay_ms / 1000.0)
            except RedisError as exc:
                raise translate_error(exc) from exc
            except UnicodeDecodeError as exc:
                raise decode_error(operation, exc) from exc

    def _client(self, db: int) -> Any:
        if isinstance(self._config, ClusterConfig):
            self._require_db_zero(db)
            return self._cluster_client()
        client = self._clients.get(db)
        if client is not None:
            return client
        if isinstance(self._config, StandaloneConfig):
            client = self._new_client(parse_endpoint(self._config.address), db=db)
        else:
            client = self._sentinel_client(self._config, db)
        self._clients[db] = client
        return client

    def _new_client(self, endpoint: Endpoint, *, db: int) -> aioredis.Redis:
        return aioredis.Redis(
            host=endpoint.host,
            port=endpoint.port,
            username=endpoint.username,
            password=endpoint.password,
            ssl=endpoint.ssl,
            db=db,
            decode_responses=True,
            socket_timeout=self._settings.socket_timeout_seconds,
        )

    def _cluster_client(self) -> RedisCluster:
        if self._cluster is None:
            assert isinstance(self._config, ClusterConfig)
            endpoints = [parse_endpoint(seed) for seed in self._config.seeds]
            first = endpoints[0]
            self._cluster = RedisCluster(
                startup_nodes=[ClusterNode(endpoint.host, endpoint.port) for endpoint in endpoints],
                username=first.username,
                password=first.password,
                ssl=first.ssl,
                decode_responses=True,
                socket_timeout=self._settings.socket_timeout_seconds,
            )
        return self._cluster

    def _node_client(self, node: ClusterNode) -> aioredis.Redis:
        client = self._node_clients.get(node.name)
        if client is None:
            assert isinstance(self._config, ClusterConfig)
            seed = parse_endpoint(self._config.seeds[0])
            client = self._new_client(seed._replace(host=node.host, port=node.port), db=0)
            self._node_clients[node.name] = client
        return client

    def _sentinel_client(self, config: SentinelConfig, db: int) -> aioredis.Redis:
        endpoints = [
            parse_endpoint(address, default_port=DEFAULT_SENTINEL_PORT)
            for address in config.sentinels
        ]
        first = endpoints[0]
        if self._sentinel is None:
            sentinel_auth: dict[str, Any] = {}
            if first.password:
                sentinel_auth = {"username": first.username, "password": first.password}
            self._sentinel = Sentinel(
                [(endpoint.host, endpoint.port) for endpoint in endpoints],
                sentinel_kwargs={
                    "socket_timeout": self._settings.socket_timeout_seconds,
                    **sentinel_auth,
                },
                socket_timeout=self._settings.socket_timeout_seconds,
                username=first.username,
                password=first.password,
                decode_responses=True,
            )
        return self._sentinel.master_for(config.master_name, redis_class=aioredis.Redis, db=db)

    def _require_db_zero(self, db: int) -> None:
        if db != 0:
            raise GatewayError("unsupported", "cluster deployments only expose database 0")


def create_gateway(config: ConnectionConfig, settings: GatewaySettings) -> RedisGateway:
    """Gateway factory used by the connection registry."""
    return RedisGateway(config, settings)


__all__ = [
    "DEFAULT_PORT",
    "Endpoint",
    "RedisGateway",
    "RedisSubscription",
    "create_gateway",
    "decode_error",
    "nodes_from_response",
    "parse_endpoint",
    "translate_error",
]
