"""Channel subscriptions owned by one connection scope."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional, Union

from keynav.errors import GatewayError, ValidationError

if TYPE_CHECKING:
    from keynav.gateway.base import KeySpaceGateway, Message, Subscription

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[["Message"], Union[None, Awaitable[None]]]


class SubscriptionManager:
    """Run one listener task per subscribed channel.

    Every listener is released on :meth:`unsubscribe` or :meth:`release_all`;
    callers switching connections must call :meth:`release_all` first.
    """

    def __init__(self, gateway: KeySpaceGateway) -> None:
        self._gateway = gateway
        self._listeners: Dict[str, tuple[Subscription, asyncio.Task[None]]] = {}

    @property
    def channels(self) -> tuple[str, ...]:
        return tuple(sorted(self._listeners))

    async def subscribe(self, channel: str, handler: MessageHandler) -> None:
        """Subscribe to ``channel`` and deliver each message to ``handler``.

        Raises:
            ValidationError: If ``channel`` is empty or already subscribed.
            GatewayError: If the subscription cannot be established.
        """
        channel = self._require_channel(channel)
        if channel in self._listeners:
            raise ValidationError(f"already subscribed to '{channel}'")
        subscription = await self._gateway.subscribe(channel)
        task = asyncio.create_task(
            self._listen(subscription, handler), name=f"keynav-subscription:{channel}"
        )
        self._listeners[channel] = (subscription, task)
        LOGGER.info("Subscribed to %s", channel)

    async def unsubscribe(self, channel: str) -> bool:
        """Release the listener for ``channel``; returns ``False`` when not subscribed."""
        entry = self._listeners.pop(channel, None)
        if entry is None:
            return False
        await self._release(*entry)
        LOGGER.info("Unsubscribed from %s", channel)
        return True

    async def release_all(self) -> None:
        """Release every listener."""
        entries = list(self._listeners.values())
        self._listeners.clear()
        for subscription, task in entries:
            await self._release(subscription, task)

    async def publish(self, channel: str, message: str) -> int:
        """Publish ``message`` to ``channel`` and return the receiver count."""
        return await self._gateway.publish(self._require_channel(channel), message)

    def task_for(self, channel: str) -> Optional[asyncio.Task[None]]:
        entry = self._listeners.get(channel)
        return entry[1] if entry else None

    async def _listen(self, subscription: Subscription, handler: MessageHandler) -> None:
        try:
            async for message in subscription.messages():
                try:
                    result = handler(message)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    LOGGER.exception("Message handler failed for %s", subscription.channel)
        except GatewayError as exc:
            LOGGER.warning("Subscription to %s ended: %s", subscription.channel, exc.message)

    @staticmethod
    async def _release(subscription: Subscription, task: asyncio.Task[None]) -> None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        await subscription.close()

    @staticmethod
    def _require_channel(channel: str) -> str:
        cleaned = channel.strip()
        if not cleaned:
            raise ValidationError("channel must not be empty")
        return cleaned


__all__ = ["MessageHandler", "SubscriptionManager"]
