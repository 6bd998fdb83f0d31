"""Background worker delivering owner notifications from the booking outbox.

Every committed booking or cancellation leaves a ``BookingEvent`` row in the
same transaction. This worker picks undelivered rows, renders the owner
message and sends it through Telegram. Delivery failures are recorded on the
event and never touch the booking itself.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from aiogram import Bot
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salon.app.core.constants import (
    NOTIFY_BATCH_SIZE,
    NOTIFY_CHECK_SECONDS,
    NOTIFY_CHECK_SECONDS_INVALID,
    NOTIFY_CHECK_SECONDS_RAW,
    NOTIFY_MAX_ATTEMPTS,
)
from salon.app.core.db import get_session, is_postgres
from salon.app.core.notifications import (
    BookingNotice,
    format_booking_notification,
    format_cancellation_notification,
    notify_salon_owner,
)
from salon.app.domain.models import (
    Booking,
    BookingEvent,
    BookingEventType,
    BookingItem,
    Master,
    Salon,
    Service,
    User,
)
from salon.app.services.shared_services import to_hm, utc_now
import salon.config as cfg

logger = logging.getLogger(__name__)


async def _service_names(session: AsyncSession, booking: Booking) -> str:
    rows = list((await session.execute(
        select(Service.name)
        .join(BookingItem, BookingItem.service_id == Service.id)
        .where(BookingItem.booking_id == booking.id)
        .order_by(BookingItem.position)
    )).scalars().all())
    if rows:
        return " + ".join(rows)
    svc = await session.get(Service, booking.service_id)
    return getattr(svc, "name", None) or "Послуга"


async def build_notice(session: AsyncSession, booking: Booking, salon: Salon) -> BookingNotice:
    master = await session.get(Master, booking.master_id) if booking.master_id else None
    return BookingNotice(
        salon_name=salon.name,
        client_name=booking.client_name,
        client_phone=booking.client_phone,
        service_name=await _service_names(session, booking),
        master_name=getattr(master, "name", None),
        date=booking.date,
        time=to_hm(booking.time),
        duration_minutes=booking.duration_minutes,
        price=booking.price,
    )


async def deliver_event(session: AsyncSession, event: BookingEvent, bot: Bot | None, now_utc: datetime) -> bool:
    """Try to deliver one outbox event. Returns True when the event is settled.

    An owner without a chat id or with notifications disabled settles the
    event as a no-op. Without a bot the event stays pending.
    """
    booking = await session.get(Booking, event.booking_id)
    salon = await session.get(Salon, booking.salon_id) if booking else None
    if booking is None or salon is None:
        event.delivered_at = now_utc
        event.last_error = "booking_missing"
        return True

    owner = await session.get(User, salon.owner_id) if salon.owner_id else None
    if owner is None or not owner.telegram_chat_id or not owner.notifications_enabled:
        logger.debug("Owner of salon %s has not enabled notifications; event %s skipped", salon.id, event.id)
        event.delivered_at = now_utc
        return True
    if bot is None:
        return False

    notice = await build_notice(session, booking, salon)
    if event.event_type == BookingEventType.BOOKING_CANCELLED:
        text = format_cancellation_notification(notice)
    else:
        text = format_booking_notification(notice)

    event.attempts = (event.attempts or 0) + 1
    try:
        sent = await notify_salon_owner(owner.telegram_chat_id, text, bot)
        error = None if sent else "telegram_api_error"
    except Exception as e:
        logger.exception("Notification for booking %s failed: %s", booking.id, e)
        sent, error = False, str(e)[:500]

    if not sent:
        event.last_error = error
        if event.attempts >= NOTIFY_MAX_ATTEMPTS:
            logger.warning("Giving up on event %s after %s attempts", event.id, event.attempts)
        return False

    event.delivered_at = now_utc
    event.last_error = None
    if event.event_type == BookingEventType.BOOKING_CREATED:
        booking.notification_sent = True
    logger.info("Owner notified about booking %s (%s)", booking.id, event.event_type.value)
    return True


async def _deliver_once(now_utc: datetime, bot: Bot | None, *, booking_id: int | None = None) -> int:
    """Single outbox sweep. Returns the number of events settled."""
    async with get_session() as session:
        stmt = (
            select(BookingEvent)
            .where(
                BookingEvent.delivered_at.is_(None),
                BookingEvent.attempts < NOTIFY_MAX_ATTEMPTS,
            )
            .order_by(BookingEvent.id)
            .limit(NOTIFY_BATCH_SIZE)
        )
        if booking_id is not None:
            stmt = stmt.where(BookingEvent.booking_id == int(booking_id))
        if is_postgres(session):
            stmt = stmt.with_for_update(skip_locked=True)
        events = list((await session.execute(stmt)).scalars().all())
        settled = 0
        for event in events:
            if await deliver_event(session, event, bot, now_utc):
                settled += 1
        if events:
            await session.commit()
        return settled


async def notify_booking(booking_id: int, bot: Bot | None) -> int:
    """Immediate best-effort delivery for one booking right after commit."""
    try:
        return await _deliver_once(utc_now(), bot, booking_id=booking_id)
    except Exception as e:
        # The outbox row stays pending for the background sweep
        logger.warning("Immediate notification for booking %s failed: %s", booking_id, e)
        return 0


async def _run_loop(stop_event: asyncio.Event, bot: Bot | None, interval_seconds: int) -> None:
    while not stop_event.is_set():
        try:
            await _deliver_once(utc_now(), bot)
        except Exception as e:
            logger.exception("Notifications worker iteration error: %s", e)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


async def start_notifications_worker(bot: Bot | None) -> Callable[[], Awaitable[None]]:
    """Start the notifications worker and return an async stop() function."""
    if NOTIFY_CHECK_SECONDS_INVALID:
        logger.warning("Invalid NOTIFY_CHECK_SECONDS=%r, using %ss", NOTIFY_CHECK_SECONDS_RAW, NOTIFY_CHECK_SECONDS)
    interval_seconds = cfg.get_notify_check_seconds(NOTIFY_CHECK_SECONDS)
    stop_event: asyncio.Event = asyncio.Event()
    task = asyncio.create_task(_run_loop(stop_event, bot, interval_seconds), name="notifications-worker")

    async def _stop() -> None:
        stop_event.set()
        try:
            await asyncio.wait_for(task, timeout=5)
        except asyncio.TimeoutError:
            task.cancel()

    logger.info("Notifications worker started (interval=%ss)", interval_seconds)
    return _stop


async def stop_notifications_worker(stop_callable: Optional[Callable[[], Awaitable[None]]] = None) -> None:
    if stop_callable:
        await stop_callable()


__all__ = [
    "build_notice",
    "deliver_event",
    "notify_booking",
    "start_notifications_worker",
    "stop_notifications_worker",
]
