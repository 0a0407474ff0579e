"""Key records and per-type detail variants."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union

from keynav.errors import StateError


class KeyType(str, Enum):
    """Key type tags in their fixed display order."""

    STRING = "string"
    HASH = "hash"
    LIST = "list"
    SET = "set"
    ZSET = "zset"
    JSON = "json"
    STREAM = "stream"
    NONE = "none"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "KeyType":
        """Map a raw server type name onto a tag; unrecognized names become ``UNKNOWN``."""
        if raw is None:
            return cls.UNKNOWN
        name = raw.strip().lower()
        if name == "rejson-rl":
            return cls.JSON
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


TYPE_ORDER: tuple[KeyType, ...] = tuple(KeyType)


@dataclass(frozen=True, slots=True)
class KeyRecord:
    """A key name with its resolved type."""

    name: str
    type: KeyType = KeyType.UNKNOWN


@dataclass(frozen=True, slots=True)
class StringDetail:
    """Raw string value; ``structured`` holds a parsed view when the value looks like JSON."""

    value: str
    structured: Any = None
    type: KeyType = field(default=KeyType.STRING, init=False)


@dataclass(frozen=True, slots=True)
class HashDetail:
    fields: Mapping[str, str]
    type: KeyType = field(default=KeyType.HASH, init=False)


@dataclass(frozen=True, slots=True)
class ListDetail:
    items: tuple[str, ...]
    type: KeyType = field(default=KeyType.LIST, init=False)


@dataclass(frozen=True, slots=True)
class SetDetail:
    members: frozenset[str]
    type: KeyType = field(default=KeyType.SET, init=False)


@dataclass(frozen=True, slots=True)
class ZSetDetail:
    """Members with scores in store rank order; never re-sorted client-side."""

    members: tuple[tuple[str, float], ...]
    type: KeyType = field(default=KeyType.ZSET, init=False)


@dataclass(frozen=True, slots=True)
class JsonDetail:
    document: Any
    type: KeyType = field(default=KeyType.JSON, init=False)


@dataclass(frozen=True, slots=True)
class EmptyDetail:
    """Placeholder for keys without a browsable payload (absent keys and streams)."""

    type: KeyType = KeyType.NONE

    def __post_init__(self) -> None:
        if self.type not in (KeyType.NONE, KeyType.STREAM, KeyType.UNKNOWN):
            raise StateError(f"EmptyDetail cannot represent a {self.type.value} key")


KeyDetail = Union[
    StringDetail, HashDetail, ListDetail, SetDetail, ZSetDetail, JsonDetail, EmptyDetail
]


@dataclass(frozen=True, slots=True)
class LoadedKey:
    """A fully materialized key: exactly one detail variant matching ``type``.

    Attributes:
        key: Key name.
        type: Type resolved at load time.
        detail: The single active payload.
    """

    key: str
    type: KeyType
    detail: KeyDetail

    def __post_init__(self) -> None:
        if self.detail.type is not self.type:
            raise StateError(
                f"detail variant {self.detail.type.value} does not match key type {self.type.value}"
            )


__all__ = [
    "EmptyDetail",
    "HashDetail",
    "JsonDetail",
    "KeyDetail",
    "KeyRecord",
    "KeyType",
    "ListDetail",
    "LoadedKey",
    "SetDetail",
    "StringDetail",
    "TYPE_ORDER",
    "ZSetDetail",
]
