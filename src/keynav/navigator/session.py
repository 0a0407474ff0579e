"""Navigator session: one connection's scan, grouping, detail and view state."""

from __future__ import annotations

import asyncio
import contextlib
import fnmatch
import logging
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from keynav.config.models import DetailSettings, NavigatorSettings
from keynav.errors import GatewayError, StateError, StorageError, ValidationError
from keynav.preferences import (
    MemoryPreferencesStore,
    ViewMode,
    ViewPreferences,
    ViewPreferencesStore,
)
from keynav.pubsub import SubscriptionManager

from .classifier import (
    CollapseState,
    NamespaceNode,
    TreeRow,
    TypeGroup,
    build_tree,
    classify_by_type,
    key_path,
    visible_rows,
)
from .detail import KeyDetailLoader
from .models import KeyRecord, KeyType, LoadedKey
from .scan import ScanCursorTracker, ScanPage, ScanState

if TYPE_CHECKING:
    from keynav.gateway.base import KeySpaceGateway

LOGGER = logging.getLogger(__name__)


class NavigatorSession:
    """Own all navigator state for one connection.

    Changing the database or pattern discards the tracker, type cache, detail
    loader and auto-refresh task and builds fresh ones; nothing carries over
    between scopes except what the preference store persists.
    """

    def __init__(
        self,
        gateway: KeySpaceGateway,
        connection: str,
        *,
        preferences_store: ViewPreferencesStore | None = None,
        navigator: NavigatorSettings | None = None,
        detail: DetailSettings | None = None,
    ) -> None:
        self._gateway = gateway
        self._connection = connection
        self._store: ViewPreferencesStore = preferences_store or MemoryPreferencesStore()
        self._settings = navigator or NavigatorSettings()
        self._detail_settings = detail or DetailSettings()
        self._subscriptions = SubscriptionManager(gateway)

        self._database = self._settings.default_database
        self._pattern = self._settings.default_pattern
        self._tracker: Optional[ScanCursorTracker] = None
        self._types: dict[str, KeyType] = {}
        self._loader: Optional[KeyDetailLoader] = None
        self._preferences = ViewPreferences()
        self._group_collapse = CollapseState()
        self._tree_collapse = CollapseState()
        self._auto_refresh: Optional[asyncio.Task[None]] = None

    # Accessors --------------------------------------------------------

    @property
    def connection(self) -> str:
        return self._connection

    @property
    def database(self) -> int:
        return self._database

    @property
    def pattern(self) -> str:
        return self._pattern

    @property
    def is_open(self) -> bool:
        return self._tracker is not None

    @property
    def state(self) -> ScanState:
        state = self._require_tracker().state
        if state is None:
            raise StateError("no scan scope has been started")
        return state

    @property
    def keys(self) -> list[str]:
        return list(self.state.keys)

    @property
    def complete(self) -> bool:
        return self.state.complete

    @property
    def types(self) -> Mapping[str, KeyType]:
        return dict(self._types)

    @property
    def loader(self) -> KeyDetailLoader:
        if self._loader is None:
            raise StateError("navigator session is not open")
        return self._loader

    @property
    def preferences(self) -> ViewPreferences:
        return self._preferences

    @property
    def group_collapse(self) -> CollapseState:
        return self._group_collapse

    @property
    def tree_collapse(self) -> CollapseState:
        return self._tree_collapse

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._subscriptions

    @property
    def auto_refreshing(self) -> bool:
        return self._auto_refresh is not None and not self._auto_refresh.done()

    # Scope lifecycle --------------------------------------------------

    async def open(self, database: Optional[int] = None, pattern: Optional[str] = None) -> None:
        """Open a fresh scope, tearing down the current one first.

        Raises:
            ValidationError: If ``database`` is outside the configured range.
        """
        database = self._settings.default_database if database is None else database
        if not 0 <= database < self._settings.database_count:
            raise ValidationError(
                f"database must be between 0 and {self._settings.database_count - 1}"
            )
        await self._teardown_scope()

        self._database = database
        self._pattern = pattern or self._settings.default_pattern
        self._tracker = ScanCursorTracker(self._gateway, page_size=self._settings.page_size)
        self._tracker.start(self._database, self._pattern)
        self._types = {}
        self._loader = KeyDetailLoader(
            self._gateway,
            self._database,
            tick_interval=self._detail_settings.tick_interval_seconds,
            detect_structured=self._detail_settings.detect_structured_strings,
        )
        self._load_preferences()
        LOGGER.debug(
            "Opened %s db %d pattern %r", self._connection, self._database, self._pattern
        )
        if self._preferences.auto_refresh.enabled:
            self.start_auto_refresh()

    async def switch(
        self, *, database: Optional[int] = None, pattern: Optional[str] = None
    ) -> None:
        """Move to another database and/or pattern, rebuilding all navigator state."""
        await self.open(
            self._database if database is None else database,
            self._pattern if pattern is None else pattern,
        )

    async def close(self) -> None:
        """Persist preferences and release every task and subscription."""
        await self._teardown_scope()
        await self._subscriptions.release_all()

    # Enumeration ------------------------------------------------------

    async def load_more(self) -> Optional[ScanPage]:
        """Fetch the next page of keys and resolve their types concurrently.

        Returns:
            ScanPage | None: The page, or ``None`` when the scope was switched or
            restarted while the page was in flight.
        """
        tracker = self._require_tracker()
        page = await tracker.step()
        if page is None or tracker is not self._tracker:
            return None
        await self._resolve_types(tracker, page.keys)
        return page

    async def load_all(self, max_steps: Optional[int] = None) -> ScanState:
        """Page through the scope until complete or ``max_steps`` pages were fetched."""
        taken = 0
        while not self.complete and (max_steps is None or taken < max_steps):
            if await self.load_more() is None:
                break
            taken += 1
        return self.state

    async def refresh(self) -> Optional[ScanPage]:
        """Restart enumeration of the current scope and fetch its first page."""
        tracker = self._require_tracker()
        tracker.start(self._database, self._pattern)
        self._types = {}
        return await self.load_more()

    async def _resolve_types(self, tracker: ScanCursorTracker, keys: Iterable[str]) -> None:
        generation = tracker.generation
        pending = [key for key in dict.fromkeys(keys) if key not in self._types]
        if not pending:
            return
        results = await asyncio.gather(
            *(self._gateway.type_of(key, self._database) for key in pending),
            return_exceptions=True,
        )
        if generation != tracker.generation or tracker is not self._tracker:
            return
        for key, result in zip(pending, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                LOGGER.debug("Type lookup for %s failed: %s", key, result)
                self._types[key] = KeyType.UNKNOWN
            else:
                self._types[key] = KeyType.parse(result)

    async def db_size(self) -> int:
        return await self._gateway.db_size(self._database)

    # Views ------------------------------------------------------------

    def by_type(self, *, include_empty: bool = False) -> list[TypeGroup]:
        return classify_by_type(self.state.keys, self._types, include_empty=include_empty)

    def records(self) -> list[KeyRecord]:
        """Return the accumulated keys with their resolved types (``unknown`` until resolved)."""
        return [KeyRecord(key, self._types.get(key, KeyType.UNKNOWN)) for key in self.state.keys]

    def tree(self) -> NamespaceNode:
        return build_tree(self.state.keys, self._settings.delimiter)

    def tree_rows(self) -> list[TreeRow]:
        return visible_rows(self.tree(), self._tree_collapse)

    def set_view_mode(self, mode: ViewMode) -> None:
        self._preferences.view_mode = mode
        if mode == "by_namespace" and self._preferences.last_path:
            self._tree_collapse.ensure_expanded_by_path(self._preferences.last_path)

    # Selection and key lifecycle --------------------------------------

    async def select(self, key: str) -> Optional[LoadedKey]:
        """Select ``key``, revealing it in the namespace view, and load its detail."""
        self._reveal(key)
        return await self.loader.load(key)

    async def create_key(
        self,
        key: str,
        key_type: KeyType,
        *,
        value: str = "",
        field: str = "",
        score: float = 0.0,
        ttl: Optional[int] = None,
    ) -> Optional[LoadedKey]:
        """Create ``key`` and select it; see :meth:`KeyDetailLoader.create`.

        The new key joins the key list when it matches the active pattern.
        """
        loaded = await self.loader.create(
            key, key_type, value=value, field=field, score=score, ttl=ttl
        )
        state = self.state
        # fnmatch agrees with Redis glob for *, ? and plain [...] classes.
        if key not in state.keys and fnmatch.fnmatchcase(key, state.pattern):
            state.keys.append(key)
            self._types[key] = key_type
        self._reveal(key)
        return loaded

    async def delete_key(self, key: str) -> bool:
        """Delete ``key`` remotely, drop it from the key list and clear it if selected."""
        removed = await self._gateway.delete(key, self._database)
        state = self.state
        state.keys[:] = [existing for existing in state.keys if existing != key]
        self._types.pop(key, None)
        if self._loader is not None and self._loader.selected_key == key:
            self._loader.clear()
        return removed > 0

    # Auto refresh -----------------------------------------------------

    def start_auto_refresh(self, interval_seconds: Optional[float] = None) -> None:
        self._require_tracker()
        self._cancel_auto_refresh()
        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValidationError("auto-refresh interval must be positive")
            self._preferences.auto_refresh.interval_seconds = interval_seconds
        self._preferences.auto_refresh.enabled = True
        self._auto_refresh = asyncio.get_running_loop().create_task(self._auto_refresh_loop())

    def stop_auto_refresh(self) -> None:
        self._preferences.auto_refresh.enabled = False
        self._cancel_auto_refresh()

    async def _auto_refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._preferences.auto_refresh.interval_seconds)
            try:
                await self.refresh()
            except GatewayError as exc:
                LOGGER.warning("Auto-refresh of %s failed: %s", self._connection, exc.message)

    def _cancel_auto_refresh(self) -> Optional[asyncio.Task[None]]:
        task = self._auto_refresh
        self._auto_refresh = None
        if task is not None and not task.done():
            task.cancel()
        return task

    # Preferences ------------------------------------------------------

    def save_preferences(self) -> None:
        """Persist collapse sets and view state for the current scope."""
        self._preferences.collapsed_groups = set(self._group_collapse.collapsed)
        self._preferences.collapsed_paths = set(self._tree_collapse.collapsed)
        self._store.save(self._connection, self._database, self._preferences)

    def _load_preferences(self) -> None:
        self._preferences = self._store.load(self._connection, self._database)
        self._group_collapse = CollapseState(self._preferences.collapsed_groups)
        self._tree_collapse = CollapseState(self._preferences.collapsed_paths)
        if self._preferences.view_mode == "by_namespace" and self._preferences.last_path:
            self._tree_collapse.ensure_expanded_by_path(self._preferences.last_path)

    # Internal helpers -------------------------------------------------

    async def _teardown_scope(self) -> None:
        if self._tracker is None:
            return
        auto_refresh = self._cancel_auto_refresh()
        if auto_refresh is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await auto_refresh
        if self._loader is not None:
            await self._loader.close()
        try:
            self.save_preferences()
        except StorageError as exc:
            LOGGER.warning("Could not save view preferences: %s", exc)
        self._tracker = None
        self._loader = None
        self._types = {}

    def _reveal(self, key: str) -> None:
        path = key_path(key, self._settings.delimiter)
        self._preferences.last_path = path
        if self._preferences.view_mode == "by_namespace":
            self._tree_collapse.ensure_expanded_by_path(path)

    def _require_tracker(self) -> ScanCursorTracker:
        if self._tracker is None:
            raise StateError("navigator session is not open")
        return self._tracker


__all__ = ["NavigatorSession"]
