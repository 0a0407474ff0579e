"""Key-space gateways."""

from .base import (
    ClusterNodeInfo,
    GatewayFactory,
    KeySpaceGateway,
    Message,
    ScanResult,
    Subscription,
    order_cluster_nodes,
)
from .redis import RedisGateway, create_gateway

__all__ = [
    "ClusterNodeInfo",
    "GatewayFactory",
    "KeySpaceGateway",
    "Message",
    "RedisGateway",
    "ScanResult",
    "Subscription",
    "create_gateway",
    "order_cluster_nodes",
]
