"""
Transactional outbox for booking lifecycle events.

Events are added to the caller's session so they commit or roll back together
with the state change they describe. The relay delivers them to the
notification sink at least once; consumers dedupe on ``dedup_key``.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.models.outbox import OutboxEvent
from src.services.notifications import NotificationSink
from src.utils.constants import EventType, OutboxStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    processed: int
    delivered: int
    failed: int


def vendor_recipient(vendor_id: int) -> str:
    return f"vendor:{vendor_id}"


def customer_recipient(customer_id: int) -> str:
    return f"customer:{customer_id}"


def record_event(
    db: AsyncSession,
    event_type: EventType,
    reservation,
    recipient: str,
    extra: dict[str, Any] | None = None,
) -> OutboxEvent:
    payload = {
        "dedup_key": f"{event_type.value}:{reservation.id}:{recipient}",
        "reservation_id": reservation.id,
        "booking_ref": reservation.booking_ref,
        "status": getattr(reservation.status, "value", reservation.status),
    }
    if extra:
        payload.update(extra)
    event = OutboxEvent(
        event_type=event_type,
        reservation_id=reservation.id,
        recipient=recipient,
        payload=payload,
        status=OutboxStatus.PENDING,
        retry_count=0,
    )
    db.add(event)
    return event


def _mark_failed(event: OutboxEvent, error: str, now: datetime, max_retries: int) -> None:
    event.retry_count += 1
    event.last_error = error
    if event.retry_count >= max_retries:
        event.status = OutboxStatus.DEAD_LETTER
        logger.error("Outbox event %s moved to dead letter: %s", event.id, error)
    else:
        # 1min, 2min, 4min, ...
        event.next_retry_at = now + timedelta(minutes=2 ** (event.retry_count - 1))


async def dispatch_pending_events(
    db: AsyncSession,
    sink: NotificationSink,
    now: datetime | None = None,
    limit: int | None = None,
) -> DispatchResult:
    settings = get_settings()
    now = now or datetime.now(UTC)
    limit = limit or settings.outbox_batch_size

    result = await db.execute(
        select(OutboxEvent)
        .where(
            OutboxEvent.status == OutboxStatus.PENDING,
            or_(OutboxEvent.next_retry_at.is_(None), OutboxEvent.next_retry_at <= now),
        )
        .order_by(OutboxEvent.id)
        .limit(limit)
    )
    events = result.scalars().all()

    delivered = failed = 0
    for event in events:
        try:
            await sink.notify(event.recipient, event.event_type.value, event.payload)
        except Exception as exc:
            # Delivery problems never propagate; the event stays queued
            logger.warning("Delivery of outbox event %s failed: %s", event.id, exc)
            _mark_failed(event, str(exc), now, settings.outbox_max_retries)
            failed += 1
            continue
        event.status = OutboxStatus.COMPLETED
        event.processed_at = now
        delivered += 1

    await db.flush()
    if events:
        logger.info("Outbox relay: %d delivered, %d failed", delivered, failed)
    return DispatchResult(processed=len(events), delivered=delivered, failed=failed)
