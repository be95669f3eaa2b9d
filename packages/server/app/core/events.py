"""
Membership status events with post-commit delivery.

Features:
- Events are collected on the SQLAlchemy session and only published once the
  owning transaction has committed (rolled back transactions publish nothing)
- Redis Pub/Sub bus for multi-process deployments
- In-process bus for single-process deployments and tests
- Handler failures are logged and never propagate to the publisher
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.redis import get_redis

if TYPE_CHECKING:
    from app.core.protocols import EventBus

logger = logging.getLogger(__name__)

PENDING_EVENTS_KEY = "pending_status_events"
STATUS_CHANGED = "membership.status_changed"


@dataclass(frozen=True)
class MembershipStatusChanged:
    membership_id: uuid.UUID
    type: str = STATUS_CHANGED

    def to_json(self) -> str:
        return json.dumps({"type": self.type, "membership_id": str(self.membership_id)})

    @classmethod
    def from_json(cls, raw: str | bytes) -> "MembershipStatusChanged":
        data = json.loads(raw)
        if data.get("type") != STATUS_CHANGED:
            raise ValueError(f"Unexpected event type: {data.get('type')!r}")
        return cls(membership_id=uuid.UUID(data["membership_id"]))


EventHandler = Callable[[MembershipStatusChanged], Awaitable[None]]


# ---------------------------------------------------------------------------
# Buses
# ---------------------------------------------------------------------------


class InMemoryEventBus:
    """Delivers events to handlers as background tasks of the running loop."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._tasks: set[asyncio.Task] = set()
        self.published: list[MembershipStatusChanged] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def publish(self, event: MembershipStatusChanged) -> None:
        self.published.append(event)
        for handler in self._handlers:
            task = asyncio.create_task(_run_handler(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until every dispatched handler has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        await self.drain()


class RedisEventBus:
    """Publishes events on a Redis channel and feeds subscribed handlers."""

    def __init__(self, channel: Optional[str] = None) -> None:
        self.channel = channel or get_settings().status_event_channel
        self._handlers: list[EventHandler] = []
        self._listener: asyncio.Task | None = None

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def publish(self, event: MembershipStatusChanged) -> None:
        redis = await get_redis()
        await redis.publish(self.channel, event.to_json())

    async def start(self) -> None:
        if self._listener is None and self._handlers:
            self._listener = asyncio.create_task(self._listen())

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

    async def _listen(self) -> None:
        redis = await get_redis()
        pubsub = redis.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None or message["type"] != "message":
                    continue
                try:
                    event = MembershipStatusChanged.from_json(message["data"])
                except (ValueError, KeyError) as exc:
                    logger.warning("Dropping malformed status event: %s", exc)
                    continue
                for handler in self._handlers:
                    await _run_handler(handler, event)
        except asyncio.CancelledError:
            logger.info("Status event listener cancelled for channel %s", self.channel)
            raise
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.close()


async def _run_handler(handler: EventHandler, event: MembershipStatusChanged) -> None:
    try:
        await handler(event)
    except Exception:
        logger.exception(
            "Status event handler failed for membership %s", event.membership_id
        )


# ---------------------------------------------------------------------------
# Bus registry
# ---------------------------------------------------------------------------

_event_bus: "EventBus | None" = None


def get_event_bus() -> "EventBus":
    """Get or create the process-wide event bus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = RedisEventBus()
    return _event_bus


def set_event_bus(bus: "EventBus | None") -> None:
    global _event_bus
    _event_bus = bus


# ---------------------------------------------------------------------------
# Post-commit publishing
# ---------------------------------------------------------------------------


def publish_after_commit(session: AsyncSession, membership_id: uuid.UUID) -> None:
    """Queue a status event to be published once ``session`` commits."""
    session.info.setdefault(PENDING_EVENTS_KEY, []).append(
        MembershipStatusChanged(membership_id=membership_id)
    )


def discard_pending_events(session: AsyncSession) -> None:
    session.info.pop(PENDING_EVENTS_KEY, None)


async def dispatch_post_commit_events(session: AsyncSession) -> int:
    """Publish the events queued on a committed session, one per membership.

    Returns the number of events published.
    """
    pending: list[MembershipStatusChanged] = session.info.pop(PENDING_EVENTS_KEY, [])
    seen: set[uuid.UUID] = set()
    bus = get_event_bus()
    for event in pending:
        if event.membership_id in seen:
            continue
        seen.add(event.membership_id)
        try:
            await bus.publish(event)
        except Exception:
            logger.exception("Failed to publish status event for %s", event.membership_id)
    return len(seen)
