"""Key-space gateway interface consumed by the navigator.

Every method is a coroutine. Failures surface as
:class:`~keynav.errors.GatewayError` carrying a machine-readable code.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Iterable, NamedTuple, Optional, Protocol

from keynav.config.models import GatewaySettings
from keynav.connection.models import ConnectionConfig


class ScanResult(NamedTuple):
    """One page of a cursor-based key enumeration."""

    cursor: int
    keys: list[str]


class Message(NamedTuple):
    """A message delivered to a channel subscription."""

    channel: str
    data: str


class ClusterNodeInfo(NamedTuple):
    """One node of a cluster topology as reported by CLUSTER NODES."""

    node_id: str
    address: str
    flags: tuple[str, ...]
    master_id: Optional[str]
    slots: tuple[str, ...]
    connected: bool

    @property
    def is_master(self) -> bool:
        return "master" in self.flags


def order_cluster_nodes(nodes: Iterable[ClusterNodeInfo]) -> list[ClusterNodeInfo]:
    """Return ``nodes`` with masters first, each group ordered by node id."""
    return sorted(nodes, key=lambda node: (not node.is_master, node.node_id))


class Subscription(Protocol):
    """A live channel subscription; closing it releases the listener."""

    channel: str

    def messages(self) -> AsyncIterator[Message]:
        """Yield messages as they arrive until the subscription is closed."""
        ...

    async def close(self) -> None:
        ...


class KeySpaceGateway(Protocol):
    """Protocol for key-value store gateways.

    Database-scoped calls take the database index explicitly so one gateway can
    serve several navigator scopes.
    """

    async def ping(self) -> float:
        """Round-trip the server and return the latency in milliseconds."""
        ...

    async def close(self) -> None:
        ...

    async def scan(self, db: int, cursor: int, pattern: str, count: int) -> ScanResult:
        """Return the next page of keys matching ``pattern`` and the cursor to resume from.

        Raises:
            GatewayError: If the request fails.
        """
        ...

    async def type_of(self, key: str, db: int) -> str:
        """Return the raw server type name of ``key`` (``none`` when absent)."""
        ...

    async def get(self, key: str, db: int) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, db: int, *, keep_ttl: bool = False) -> None:
        ...

    async def delete(self, key: str, db: int) -> int:
        ...

    async def ttl(self, key: str, db: int) -> int:
        """Return remaining seconds, ``-1`` for no expiry or ``-2`` when absent."""
        ...

    async def expire(self, key: str, seconds: int, db: int) -> bool:
        ...

    async def persist(self, key: str, db: int) -> bool:
        ...

    async def hgetall(self, key: str, db: int) -> dict[str, str]:
        ...

    async def hset(self, key: str, field: str, value: str, db: int) -> int:
        ...

    async def hdel(self, key: str, field: str, db: int) -> int:
        ...

    async def lrange(self, key: str, start: int, stop: int, db: int) -> list[str]:
        ...

    async def lpush(self, key: str, value: str, db: int) -> int:
        ...

    async def rpop(self, key: str, db: int) -> Optional[str]:
        ...

    async def smembers(self, key: str, db: int) -> set[str]:
        ...

    async def sadd(self, key: str, member: str, db: int) -> int:
        ...

    async def srem(self, key: str, member: str, db: int) -> int:
        ...

    async def zrange_withscores(self, key: str, db: int) -> list[tuple[str, float]]:
        """Return every member with its score in ascending rank order."""
        ...

    async def zadd(self, key: str, member: str, score: float, db: int) -> int:
        ...

    async def zrem(self, key: str, member: str, db: int) -> int:
        ...

    async def json_get(self, key: str, db: int) -> Any:
        """Return the document stored at the root path of a JSON key."""
        ...

    async def json_set(self, key: str, document: Any, db: int) -> None:
        ...

    async def db_size(self, db: int) -> int:
        ...

    async def publish(self, channel: str, message: str) -> int:
        """Publish ``message`` and return the number of receiving subscribers."""
        ...

    async def subscribe(self, channel: str) -> Subscription:
        ...

    async def cluster_nodes(self) -> list[ClusterNodeInfo]:
        """Return the cluster topology, masters first; empty outside cluster mode."""
        ...


GatewayFactory = Callable[[ConnectionConfig, GatewaySettings], KeySpaceGateway]


__all__ = [
    "ClusterNodeInfo",
    "GatewayFactory",
    "KeySpaceGateway",
    "Message",
    "ScanResult",
    "Subscription",
    "order_cluster_nodes",
]
