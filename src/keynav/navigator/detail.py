"""Materialized detail for the selected key, with a locally ticking TTL.

Each selection is tagged with a token; any response that arrives after a
newer selection has been made is dropped. Detail variants are immutable and
swapped in whole, so a failed fetch or mutation never leaves a partially
updated record behind.
"""

from __future__ import annotations

import asyncio
import bisect
import contextlib
import json
import logging
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

from keynav.errors import StateError, ValidationError

from .models import (
    EmptyDetail,
    HashDetail,
    JsonDetail,
    KeyDetail,
    KeyType,
    ListDetail,
    LoadedKey,
    SetDetail,
    StringDetail,
    ZSetDetail,
)

if TYPE_CHECKING:
    from keynav.gateway.base import KeySpaceGateway

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

NO_EXPIRY = -1
KEY_ABSENT = -2


CREATABLE_TYPES: tuple[KeyType, ...] = (
    KeyType.STRING,
    KeyType.HASH,
    KeyType.LIST,
    KeyType.SET,
    KeyType.ZSET,
    KeyType.JSON,
)


class LoadStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


def _parse_document(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as exc:
        raise ValidationError(f"invalid JSON document: {exc}") from exc


def detect_structured(value: str) -> Any:
    """Return the parsed document when ``value`` looks like a JSON object or array.

    The stored value is never altered; the result only decides whether a
    structured presentation is offered.
    """
    candidate = value.strip()
    if not candidate or candidate[0] not in "[{":
        return None
    try:
        return json.loads(candidate)
    except ValueError:
        return None


class KeyDetailLoader:
    """Load and edit the single selected key of one database.

    Args:
        gateway: Key-space gateway for the active connection.
        database: Logical database index.
        tick_interval: Seconds between local TTL decrements.
        detect_structured: Inspect string values for JSON content.
    """

    def __init__(
        self,
        gateway: KeySpaceGateway,
        database: int,
        *,
        tick_interval: float = 1.0,
        detect_structured: bool = True,
    ) -> None:
        self._gateway = gateway
        self._database = database
        self._tick_interval = tick_interval
        self._detect_structured = detect_structured
        self._token = 0
        self._status = LoadStatus.IDLE
        self._selected: Optional[str] = None
        self._loaded: Optional[LoadedKey] = None
        self._ttl: Optional[int] = None
        self._error: Optional[Exception] = None
        self._ticker: Optional[asyncio.Task[None]] = None

    @property
    def database(self) -> int:
        return self._database

    @property
    def status(self) -> LoadStatus:
        return self._status

    @property
    def selected_key(self) -> Optional[str]:
        return self._selected

    @property
    def current(self) -> Optional[LoadedKey]:
        """The installed detail, or ``None`` when nothing is loaded."""
        return self._loaded

    @property
    def ttl(self) -> Optional[int]:
        """Locally tracked TTL of the installed key."""
        return self._ttl

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    @property
    def ticking(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    # Loading ----------------------------------------------------------

    async def load(self, key: str) -> Optional[LoadedKey]:
        """Select ``key`` and materialize its detail.

        Selecting a different key discards the previous detail immediately;
        reloading the same key keeps it on screen until the replacement lands.

        Returns:
            LoadedKey | None: The installed detail, or ``None`` when a newer
            selection superseded this one while it was loading.

        Raises:
            GatewayError: If a fetch fails for the current selection. The
                previously installed detail, if any, is left untouched.
        """
        self._token += 1
        token = self._token
        self._cancel_ticker()
        if self._loaded is not None and self._loaded.key != key:
            self._loaded = None
            self._ttl = None
        self._selected = key
        self._status = LoadStatus.LOADING
        self._error = None

        try:
            raw_type, ttl = await asyncio.gather(
                self._gateway.type_of(key, self._database),
                self._gateway.ttl(key, self._database),
            )
            key_type = KeyType.parse(raw_type)
            detail = await self._fetch_detail(key, key_type)
        except Exception as exc:
            if token != self._token:
                LOGGER.debug("Dropping failed load of superseded selection %s", key)
                return None
            self._status = LoadStatus.FAILED
            self._error = exc
            self._restart_ticker()
            raise

        if token != self._token:
            LOGGER.debug("Dropping stale detail for %s", key)
            return None

        loaded = LoadedKey(key=key, type=key_type, detail=detail)
        self._loaded = loaded
        self._ttl = ttl
        self._status = LoadStatus.LOADED
        self._restart_ticker()
        return loaded

    async def reload(self) -> Optional[LoadedKey]:
        """Reload the selected key from the server."""
        if self._selected is None:
            raise StateError("no key is selected")
        return await self.load(self._selected)

    async def refresh_ttl(self) -> Optional[int]:
        """Replace the local TTL with the authoritative value and restart the countdown."""
        loaded = self._require()
        token = self._token
        ttl = await self._gateway.ttl(loaded.key, self._database)
        if token != self._token:
            return None
        self._ttl = ttl
        self._restart_ticker()
        return ttl

    def clear(self) -> None:
        """Drop the selection and stop the countdown."""
        self._token += 1
        self._cancel_ticker()
        self._selected = None
        self._loaded = None
        self._ttl = None
        self._error = None
        self._status = LoadStatus.IDLE

    async def close(self) -> None:
        ticker = self._ticker
        self.clear()
        if ticker is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await ticker

    async def _fetch_detail(self, key: str, key_type: KeyType) -> KeyDetail:
        db = self._database
        if key_type is KeyType.STRING:
            value = await self._gateway.get(key, db) or ""
            structured = detect_structured(value) if self._detect_structured else None
            return StringDetail(value=value, structured=structured)
        if key_type is KeyType.HASH:
            return HashDetail(fields=MappingProxyType(dict(await self._gateway.hgetall(key, db))))
        if key_type is KeyType.LIST:
            return ListDetail(items=tuple(await self._gateway.lrange(key, 0, -1, db)))
        if key_type is KeyType.SET:
            return SetDetail(members=frozenset(await self._gateway.smembers(key, db)))
        if key_type is KeyType.ZSET:
            return ZSetDetail(members=tuple(await self._gateway.zrange_withscores(key, db)))
        if key_type is KeyType.JSON:
            return JsonDetail(document=await self._gateway.json_get(key, db))
        return EmptyDetail(type=key_type)

    # TTL countdown ----------------------------------------------------

    def tick(self) -> bool:
        """Decrement the local TTL by one second.

        Returns:
            bool: Whether further ticks would change the TTL.
        """
        if self._ttl is None or self._ttl <= 0:
            return False
        self._ttl -= 1
        return self._ttl > 0

    def _restart_ticker(self) -> None:
        self._cancel_ticker()
        if self._ttl is not None and self._ttl > 0:
            self._ticker = asyncio.get_running_loop().create_task(self._run_ticker())

    def _cancel_ticker(self) -> None:
        if self._ticker is not None and not self._ticker.done():
            self._ticker.cancel()
        self._ticker = None

    async def _run_ticker(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            if not self.tick():
                return

    # Creation ---------------------------------------------------------

    async def create(
        self,
        key: str,
        key_type: KeyType,
        *,
        value: str = "",
        field: str = "",
        score: float = 0.0,
        ttl: Optional[int] = None,
    ) -> Optional[LoadedKey]:
        """Create ``key`` holding a first element, then select it.

        ``value`` is the string value, the first list item, the set or
        sorted-set member, the hash field value or the JSON document text
        (empty text stores ``{}``). ``field`` names the hash field and
        ``score`` ranks the sorted-set member. The value is written first;
        a positive ``ttl`` is then applied with EXPIRE.

        Raises:
            ValidationError: If the input cannot describe a new key of ``key_type``.
            StateError: If ``key`` already exists.
        """
        if not key:
            raise ValidationError("key name must not be empty")
        if key_type not in CREATABLE_TYPES:
            raise ValidationError(f"{key_type.value} keys cannot be created")
        if key_type is KeyType.HASH and not field:
            raise ValidationError("a new hash key needs a field name")
        document = _parse_document(value or "{}") if key_type is KeyType.JSON else None

        existing = KeyType.parse(await self._gateway.type_of(key, self._database))
        if existing is not KeyType.NONE:
            raise StateError(f"{key} already exists as a {existing.value} key")

        db = self._database
        if key_type is KeyType.STRING:
            await self._gateway.set(key, value, db)
        elif key_type is KeyType.HASH:
            await self._gateway.hset(key, field, value, db)
        elif key_type is KeyType.LIST:
            await self._gateway.lpush(key, value, db)
        elif key_type is KeyType.SET:
            await self._gateway.sadd(key, value, db)
        elif key_type is KeyType.ZSET:
            await self._gateway.zadd(key, value, score, db)
        else:
            await self._gateway.json_set(key, document, db)
        if ttl is not None and ttl > 0:
            await self._gateway.expire(key, ttl, db)
        LOGGER.info("Created %s key %s in db %d", key_type.value, key, db)
        return await self.load(key)

    # Mutations --------------------------------------------------------

    async def hash_set(self, field: str, value: str) -> None:
        def _patch(detail: HashDetail) -> KeyDetail:
            return HashDetail(fields=MappingProxyType({**detail.fields, field: value}))

        await self._mutate(
            KeyType.HASH,
            lambda key: self._gateway.hset(key, field, value, self._database),
            _patch,
        )

    async def hash_remove(self, field: str) -> None:
        def _patch(detail: HashDetail) -> KeyDetail:
            remaining = {name: val for name, val in detail.fields.items() if name != field}
            return HashDetail(fields=MappingProxyType(remaining))

        await self._mutate(
            KeyType.HASH,
            lambda key: self._gateway.hdel(key, field, self._database),
            _patch,
        )

    async def set_add(self, member: str) -> None:
        await self._mutate(
            KeyType.SET,
            lambda key: self._gateway.sadd(key, member, self._database),
            lambda detail: SetDetail(members=detail.members | {member}),
        )

    async def set_remove(self, member: str) -> None:
        await self._mutate(
            KeyType.SET,
            lambda key: self._gateway.srem(key, member, self._database),
            lambda detail: SetDetail(members=detail.members - {member}),
        )

    async def zset_add(self, member: str, score: float) -> None:
        def _patch(detail: ZSetDetail) -> KeyDetail:
            # Rank order is (score, member bytes); only the new entry is positioned.
            entries = [pair for pair in detail.members if pair[0] != member]
            ranks = [(entry_score, name.encode("utf-8")) for name, entry_score in entries]
            index = bisect.bisect_left(ranks, (score, member.encode("utf-8")))
            entries.insert(index, (member, score))
            return ZSetDetail(members=tuple(entries))

        await self._mutate(
            KeyType.ZSET,
            lambda key: self._gateway.zadd(key, member, score, self._database),
            _patch,
        )

    async def zset_remove(self, member: str) -> None:
        await self._mutate(
            KeyType.ZSET,
            lambda key: self._gateway.zrem(key, member, self._database),
            lambda detail: ZSetDetail(
                members=tuple(pair for pair in detail.members if pair[0] != member)
            ),
        )

    async def list_push(self, value: str) -> None:
        """Push ``value`` onto the head of the list and reload it."""
        loaded = self._require(KeyType.LIST)
        await self._gateway.lpush(loaded.key, value, self._database)
        await self.reload()

    async def list_pop(self) -> Optional[str]:
        """Pop from the tail of the list, reload it, and return the popped value."""
        loaded = self._require(KeyType.LIST)
        popped = await self._gateway.rpop(loaded.key, self._database)
        await self.reload()
        return popped

    async def replace_document(self, document: Any) -> None:
        """Replace the JSON document; text input must be well-formed JSON.

        Raises:
            ValidationError: If ``document`` is text that does not parse as JSON.
        """
        parsed = _parse_document(document) if isinstance(document, str) else document
        await self._mutate(
            KeyType.JSON,
            lambda key: self._gateway.json_set(key, parsed, self._database),
            lambda _detail: JsonDetail(document=parsed),
        )

    async def set_string(self, value: str) -> None:
        """Overwrite a string value, keeping its expiry."""
        structured = detect_structured(value) if self._detect_structured else None
        await self._mutate(
            KeyType.STRING,
            lambda key: self._gateway.set(key, value, self._database, keep_ttl=True),
            lambda _detail: StringDetail(value=value, structured=structured),
        )

    async def set_ttl(self, seconds: int) -> Optional[int]:
        """Set the expiry of the selected key; a negative value removes it."""
        loaded = self._require()
        if seconds < 0:
            await self._gateway.persist(loaded.key, self._database)
        else:
            await self._gateway.expire(loaded.key, seconds, self._database)
        return await self.refresh_ttl()

    async def clear_ttl(self) -> Optional[int]:
        """Remove the expiry of the selected key."""
        loaded = self._require()
        await self._gateway.persist(loaded.key, self._database)
        return await self.refresh_ttl()

    def _require(self, expected: Optional[KeyType] = None) -> LoadedKey:
        loaded = self._loaded
        if loaded is None:
            raise StateError("no key detail is loaded")
        if expected is not None and loaded.type is not expected:
            raise StateError(
                f"{loaded.key} is a {loaded.type.value} key, not {expected.value}"
            )
        return loaded

    async def _mutate(
        self,
        expected: KeyType,
        remote: Callable[[str], Awaitable[T]],
        patch: Callable[[Any], KeyDetail],
    ) -> T:
        loaded = self._require(expected)
        token = self._token
        result = await remote(loaded.key)
        current = self._loaded
        if (
            token == self._token
            and current is not None
            and current.key == loaded.key
            and current.type is expected
        ):
            self._loaded = LoadedKey(
                key=current.key, type=current.type, detail=patch(current.detail)
            )
        else:
            LOGGER.debug("Selection changed while mutating %s; local patch skipped", loaded.key)
        return result


__all__ = [
    "CREATABLE_TYPES",
    "KEY_ABSENT",
    "KeyDetailLoader",
    "LoadStatus",
    "NO_EXPIRY",
    "detect_structured",
]
