"""Incremental, cursor-based key enumeration for one (database, pattern) scope."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from keynav.errors import GatewayError, StateError

if TYPE_CHECKING:
    from keynav.gateway.base import KeySpaceGateway

LOGGER = logging.getLogger(__name__)

MAX_CURSOR = 2**64


@dataclass
class ScanState:
    """Enumeration progress for one scope.

    A state is never reused across scopes: :meth:`ScanCursorTracker.start`
    always replaces it with a fresh instance carrying a new generation id.
    """

    database: int
    pattern: str
    generation: int
    cursor: int = 0
    keys: list[str] = field(default_factory=list)
    in_flight: bool = False
    steps: int = 0

    @property
    def complete(self) -> bool:
        """Return ``True`` once the cursor has come back to zero after a step."""
        return self.steps > 0 and self.cursor == 0


@dataclass(frozen=True, slots=True)
class ScanPage:
    """Keys returned by one step and the cursor it left behind."""

    keys: tuple[str, ...]
    cursor: int
    complete: bool


class ScanCursorTracker:
    """Drive SCAN-style enumeration through a key-space gateway.

    Duplicate observations across pages are kept as returned by the store.
    """

    def __init__(self, gateway: KeySpaceGateway, page_size: int = 100) -> None:
        self._gateway = gateway
        self._page_size = page_size
        self._generation = 0
        self._state: Optional[ScanState] = None

    @property
    def state(self) -> Optional[ScanState]:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def start(self, database: int, pattern: str) -> ScanState:
        """Begin a new enumeration, superseding any scan still in flight.

        Args:
            database: Logical database index.
            pattern: Glob-style MATCH pattern.

        Returns:
            ScanState: The fresh state for the new scope.
        """
        self._generation += 1
        self._state = ScanState(database=database, pattern=pattern, generation=self._generation)
        LOGGER.debug("Started scan %d on db %d pattern %r", self._generation, database, pattern)
        return self._state

    async def step(self, page_size: Optional[int] = None) -> Optional[ScanPage]:
        """Fetch one page and append it to the accumulated keys.

        Args:
            page_size: COUNT hint for this request; defaults to the tracker's page size.

        Returns:
            ScanPage | None: The page, or ``None`` when the scan was superseded
            while the request was in flight.

        Raises:
            StateError: If no scan was started, a step is already in flight, or
                the enumeration is complete.
            GatewayError: If the request fails; accumulated keys and cursor are unchanged.
        """
        state = self._state
        if state is None:
            raise StateError("no scan has been started")
        if state.in_flight:
            raise StateError("a scan step is already in flight for this scope")
        if state.complete:
            raise StateError("enumeration is already complete for this scope")

        generation = state.generation
        state.in_flight = True
        try:
            result = await self._gateway.scan(
                state.database,
                state.cursor,
                state.pattern,
                page_size or self._page_size,
            )
        finally:
            state.in_flight = False

        if generation != self._generation:
            LOGGER.debug("Discarding page from superseded scan %d", generation)
            return None
        if not 0 <= result.cursor < MAX_CURSOR:
            raise GatewayError("protocol_error", f"scan cursor out of range: {result.cursor}")

        state.keys.extend(result.keys)
        state.cursor = result.cursor
        state.steps += 1
        return ScanPage(keys=tuple(result.keys), cursor=result.cursor, complete=result.cursor == 0)

    async def run(self, max_steps: Optional[int] = None) -> ScanState:
        """Step until the enumeration completes or ``max_steps`` pages were fetched."""
        state = self._state
        if state is None:
            raise StateError("no scan has been started")
        taken = 0
        while not state.complete and (max_steps is None or taken < max_steps):
            page = await self.step()
            if page is None:
                break
            taken += 1
        return state


__all__ = ["MAX_CURSOR", "ScanCursorTracker", "ScanPage", "ScanState"]
