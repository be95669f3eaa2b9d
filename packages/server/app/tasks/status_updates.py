"""
Consumer of membership status events.

Recomputes the completion status of the membership named by each event in
a fresh transaction. Failures are logged and never reach the publisher.
"""

from __future__ import annotations

from typing import Optional

import structlog

from app.core.events import MembershipStatusChanged, get_event_bus
from app.core.protocols import EventBus
from app.services.completion_status import update_completion_status

log = structlog.get_logger()


async def handle_status_changed(event: MembershipStatusChanged) -> None:
    try:
        await update_completion_status(event.membership_id)
    except Exception:
        log.exception("status_update.failed", membership_id=str(event.membership_id))


def register_status_consumer(bus: Optional[EventBus] = None) -> EventBus:
    bus = bus or get_event_bus()
    bus.subscribe(handle_status_changed)
    return bus
