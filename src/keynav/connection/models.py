"""Connection configuration models."""

from __future__ import annotations

from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class ConnectionBaseModel(BaseModel):
    """Base model with strict field handling."""

    model_config = ConfigDict(extra="forbid")


class StandaloneConfig(ConnectionBaseModel):
    """A single-node deployment reached through one address."""

    mode: Literal["standalone"] = "standalone"
    address: str = Field(min_length=1)

    def addresses(self) -> List[str]:
        return [self.address]


class ClusterConfig(ConnectionBaseModel):
    """A sharded deployment discovered from one or more seed nodes."""

    mode: Literal["cluster"] = "cluster"
    seeds: List[str] = Field(min_length=1)

    def addresses(self) -> List[str]:
        return list(self.seeds)


class SentinelConfig(ConnectionBaseModel):
    """A sentinel-supervised deployment resolved through its master name."""

    mode: Literal["sentinel"] = "sentinel"
    master_name: str = Field(min_length=1)
    sentinels: List[str] = Field(min_length=1)

    def addresses(self) -> List[str]:
        return list(self.sentinels)


ConnectionConfig = Annotated[
    Union[StandaloneConfig, ClusterConfig, SentinelConfig],
    Field(discriminator="mode"),
]

CONNECTION_MODES: tuple[str, ...] = ("standalone", "cluster", "sentinel")


class ConnectionFields(ConnectionBaseModel):
    """Raw form fields collected when creating or editing a connection.

    Attributes:
        address: Standalone address.
        seeds: Newline-delimited cluster seed addresses.
        master_name: Sentinel master name.
        sentinels: Newline-delimited sentinel addresses.
        password: Shared secret injected into every produced address.
    """

    address: str = ""
    seeds: str = ""
    master_name: str = ""
    sentinels: str = ""
    password: str = ""


__all__ = [
    "ClusterConfig",
    "CONNECTION_MODES",
    "ConnectionConfig",
    "ConnectionFields",
    "SentinelConfig",
    "StandaloneConfig",
]
