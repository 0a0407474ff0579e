"""Connection identities: credential codec, configuration builder and persistence."""

from .builder import ConnectionConfigBuilder, decompose, split_addresses
from .codec import ParsedAddress, inject, mask, parse
from .models import (
    ClusterConfig,
    ConnectionConfig,
    ConnectionFields,
    SentinelConfig,
    StandaloneConfig,
)
from .registry import ConnectionHealth, ConnectionRegistry, describe
from .store import ConnectionStore

__all__ = [
    "ClusterConfig",
    "ConnectionConfig",
    "ConnectionConfigBuilder",
    "ConnectionFields",
    "ConnectionHealth",
    "ConnectionRegistry",
    "ConnectionStore",
    "ParsedAddress",
    "SentinelConfig",
    "StandaloneConfig",
    "decompose",
    "describe",
    "inject",
    "mask",
    "parse",
    "split_addresses",
]
