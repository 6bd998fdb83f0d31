from __future__ import annotations
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, or_, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salon.app.core.constants import DEFAULT_BOOKING_STATUS, REQUIRE_ADVISORY_LOCK
from salon.app.core.db import get_session, is_postgres
from salon.app.core.errors import (
    InvalidDurationError,
    InvalidStatusTransitionError,
    NotFoundError,
    SlotConflictError,
    SlotUnavailableError,
)
from salon.app.domain.models import (
    BlockReason,
    Booking,
    BookingEvent,
    BookingEventType,
    BookingItem,
    BookingStatus,
    Master,
    Salon,
    ScheduleBlock,
    Service,
    normalize_booking_status,
)
from salon.app.services.booking_flow import ANY_SPECIALIST, BookingRequest, validate_contact
from salon.app.services.shared_services import add_minutes_hm, hm_to_time, local_now, parse_hm, to_hm
from salon.app.services.slots import (
    DurationPlan,
    Slot,
    SlotConfig,
    filter_available,
    find_run_in_any,
    generate_slots,
    get_slot_config,
    mark_unavailable_before,
    plan_duration,
)
from salon.app.services.working_hours import day_interval, validate_working_hours
import salon.config as cfg

logger = logging.getLogger(__name__)


# ---------------- Read side ---------------- #
class SalonRepo:
    """Salon / catalogue reads used by the scheduling core."""

    @staticmethod
    async def get(session: AsyncSession, salon_id: int) -> Salon | None:
        return await session.get(Salon, int(salon_id))

    @staticmethod
    async def get_by_slug(slug: str) -> Salon | None:
        async with get_session() as session:
            stmt = select(Salon).where(Salon.slug == slug, Salon.is_active.is_(True))
            return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def get_working_hours(salon_id: int) -> list[dict[str, Any]]:
        async with get_session() as session:
            salon = await session.get(Salon, int(salon_id))
            if salon is None:
                raise NotFoundError("Салон не знайдено.")
            return list(salon.working_hours or [])

    @staticmethod
    async def set_working_hours(salon_id: int, entries: Iterable[dict[str, Any]]) -> list[dict[str, str]]:
        """Validate and persist a weekly template (owner dashboard write)."""
        cleaned = validate_working_hours(entries)
        async with get_session() as session:
            salon = await session.get(Salon, int(salon_id))
            if salon is None:
                raise NotFoundError("Салон не знайдено.")
            salon.working_hours = cleaned
            await session.commit()
        logger.info("Working hours updated for salon %s", salon_id)
        return cleaned

    @staticmethod
    async def list_masters(session: AsyncSession, salon_id: int) -> list[Master]:
        stmt = (
            select(Master)
            .where(Master.salon_id == int(salon_id), Master.is_active.is_(True))
            .order_by(Master.sort_order, Master.id)
        )
        return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    async def list_services(session: AsyncSession, salon_id: int) -> list[Service]:
        stmt = (
            select(Service)
            .where(Service.salon_id == int(salon_id), Service.is_active.is_(True))
            .order_by(Service.sort_order, Service.id)
        )
        return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    async def get_services(session: AsyncSession, salon_id: int, service_ids: Sequence[int]) -> list[Service]:
        """Load the selected services in selection order; unknown ids raise NotFoundError."""
        ids = [int(s) for s in service_ids]
        if not ids:
            raise InvalidDurationError("Оберіть хоча б одну послугу.")
        stmt = select(Service).where(
            Service.salon_id == int(salon_id),
            Service.id.in_(ids),
            Service.is_active.is_(True),
        )
        by_id = {s.id: s for s in (await session.execute(stmt)).scalars().all()}
        missing = [sid for sid in ids if sid not in by_id]
        if missing:
            raise NotFoundError(f"Послугу не знайдено: {missing}")
        return [by_id[sid] for sid in ids]


class ScheduleRepo:
    """Blocking records: the only source AvailabilityFilter consults."""

    @staticmethod
    async def get_schedule_blocks(
        session: AsyncSession, salon_id: int, master_id: int | None, target_date: date
    ) -> list[ScheduleBlock]:
        """Blocks for (salon, master, date), including salon-wide blocks."""
        master_clause = ScheduleBlock.master_id.is_(None)
        if master_id is not None:
            master_clause = or_(ScheduleBlock.master_id == int(master_id), master_clause)
        stmt = (
            select(ScheduleBlock)
            .where(
                ScheduleBlock.salon_id == int(salon_id),
                ScheduleBlock.date == target_date,
                ScheduleBlock.is_blocked.is_(True),
                master_clause,
            )
            .order_by(ScheduleBlock.time_start)
        )
        return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    async def create_schedule_block(
        salon_id: int,
        master_id: int | None,
        target_date: date,
        time_start: str,
        time_end: str,
        reason: BlockReason = BlockReason.MANUAL,
    ) -> ScheduleBlock:
        """Manual or day-off block created from the owner dashboard."""
        start, end = to_hm(time_start), to_hm(time_end)
        if start >= end:
            raise SlotUnavailableError("Некоректний інтервал.", code="invalid_interval")
        async with get_session() as session:
            try:
                if master_id is not None:
                    await _lock_master_day(session, int(master_id), target_date)
                    existing = await ScheduleRepo.get_schedule_blocks(session, salon_id, master_id, target_date)
                    if _overlapping(existing, start, end):
                        raise SlotConflictError("Інтервал перетинається з наявним записом.")
                block = ScheduleBlock(
                    salon_id=int(salon_id),
                    master_id=int(master_id) if master_id is not None else None,
                    date=target_date,
                    time_start=hm_to_time(start),
                    time_end=hm_to_time(end),
                    is_blocked=True,
                    blocked_reason=reason,
                )
                session.add(block)
                await session.commit()
            except IntegrityError as ie:
                await session.rollback()
                logger.info("Schedule block rejected by storage (overlap): %s", ie)
                raise SlotConflictError("Інтервал перетинається з наявним записом.") from ie
        logger.info("Schedule block %s created: salon=%s master=%s %s %s-%s", block.id, salon_id, master_id, target_date, start, end)
        return block

    @staticmethod
    async def delete_schedule_blocks_for_booking(session: AsyncSession, booking_id: int) -> int:
        result = await session.execute(delete(ScheduleBlock).where(ScheduleBlock.booking_id == int(booking_id)))
        return int(result.rowcount or 0)


class BookingRepo:
    @staticmethod
    async def get(booking_id: int) -> Booking | None:
        async with get_session() as session:
            return await session.get(Booking, int(booking_id))

    @staticmethod
    async def get_by_idempotency_key(session: AsyncSession, key: str) -> Booking | None:
        stmt = select(Booking).where(Booking.idempotency_key == key)
        return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def get_block(session: AsyncSession, booking_id: int) -> ScheduleBlock | None:
        stmt = select(ScheduleBlock).where(ScheduleBlock.booking_id == int(booking_id))
        return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def list_for_salon(salon_id: int, target_date: date | None = None) -> list[Booking]:
        async with get_session() as session:
            stmt = select(Booking).where(Booking.salon_id == int(salon_id))
            if target_date is not None:
                stmt = stmt.where(Booking.date == target_date)
            stmt = stmt.order_by(Booking.date, Booking.time)
            return list((await session.execute(stmt)).scalars().all())


# ---------------- Helpers ---------------- #
def _overlapping(blocks: Iterable[ScheduleBlock], start: str, end: str) -> list[ScheduleBlock]:
    return [b for b in blocks if to_hm(b.time_start) < end and to_hm(b.time_end) > start]


async def _lock_master_day(session: AsyncSession, master_id: int, target_date: date) -> None:
    """Serialize check-then-insert per (master, day) on PostgreSQL.

    The advisory lock is released with the transaction. Other backends rely
    on the unique index alone. The lock runs in a savepoint so a failure
    leaves the outer transaction usable.
    """
    if not is_postgres(session):
        return
    try:
        async with session.begin_nested():
            await session.execute(
                text("SELECT pg_advisory_xact_lock(:k1, :k2)"),
                {"k1": int(master_id) % 2147483647, "k2": target_date.toordinal()},
            )
    except SQLAlchemyError as e:
        logger.exception("Advisory lock failed for master=%s date=%s: %s", master_id, target_date, e)
        if REQUIRE_ADVISORY_LOCK:
            raise


def _today_cutoff(now: datetime, target_date: date, config: SlotConfig) -> str | None:
    """Earliest bookable start on the current day, or None for other days."""
    if target_date != now.date():
        return None
    lead = cfg.get_same_day_lead_minutes()
    earliest = now + timedelta(minutes=lead)
    if earliest.date() != target_date:
        return "24:00"
    return f"{earliest:%H:%M}"


def _outside_booking_window(target_date: date, now: datetime) -> bool:
    today = now.date()
    return target_date < today or target_date > today + timedelta(days=cfg.get_booking_window_days())


async def _master_day_slots(
    session: AsyncSession,
    salon: Salon,
    master_ids: Sequence[int],
    target_date: date,
    *,
    now: datetime,
    config: SlotConfig,
) -> dict[int, list[Slot]]:
    """Each master's own availability for one day; empty when nothing is bookable."""
    if _outside_booking_window(target_date, now):
        return {}
    interval = day_interval(salon.working_hours, target_date)
    if interval is None:
        return {}
    slot_times = generate_slots(interval[0], interval[1], config.slot_step_minutes)
    cutoff = _today_cutoff(now, target_date, config)

    result: dict[int, list[Slot]] = {}
    for master_id in master_ids:
        blocks = await ScheduleRepo.get_schedule_blocks(session, salon.id, master_id, target_date)
        slots = filter_available(slot_times, blocks)
        if cutoff is not None:
            slots = mark_unavailable_before(slots, cutoff)
        result[master_id] = slots
    return result


async def _resolve_master_ids(session: AsyncSession, salon: Salon, master_id: int | str | None) -> list[int]:
    if master_id is None or master_id == ANY_SPECIALIST:
        return [m.id for m in await SalonRepo.list_masters(session, salon.id)]
    return [int(master_id)]


async def compute_day_slots(
    session: AsyncSession,
    salon: Salon,
    master_id: int | str | None,
    target_date: date,
    *,
    now: datetime | None = None,
    config: SlotConfig | None = None,
) -> list[Slot]:
    """Working hours -> slot grid -> availability for one master and day.

    With ``ANY_SPECIALIST`` a slot is shown available when at least one
    active master is free at that time. Whether a multi-slot run fits is
    decided per master (see ``get_master_slots``).
    """
    per_master = await _master_day_slots(
        session,
        salon,
        await _resolve_master_ids(session, salon, master_id),
        target_date,
        now=now or local_now(),
        config=config or get_slot_config(),
    )
    if not per_master:
        return []
    rows = zip(*per_master.values())
    return [Slot(row[0].time, any(s.available for s in row)) for row in rows]


async def _active_salon(session: AsyncSession, salon_id: int) -> Salon:
    salon = await SalonRepo.get(session, salon_id)
    if salon is None or not salon.is_active:
        raise NotFoundError("Салон не знайдено.")
    return salon


async def get_master_slots(
    salon_id: int,
    master_id: int | str | None,
    target_date: date,
    *,
    now: datetime | None = None,
) -> dict[int, list[Slot]]:
    """Availability keyed by master id; one entry unless ``master_id`` is ANY."""
    async with get_session() as session:
        salon = await _active_salon(session, salon_id)
        return await _master_day_slots(
            session,
            salon,
            await _resolve_master_ids(session, salon, master_id),
            target_date,
            now=now or local_now(),
            config=get_slot_config(),
        )


async def get_available_slots(
    salon_id: int,
    master_id: int | str | None,
    target_date: date,
    *,
    now: datetime | None = None,
) -> list[Slot]:
    async with get_session() as session:
        salon = await _active_salon(session, salon_id)
        slots = await compute_day_slots(session, salon, master_id, target_date, now=now)
    logger.debug("Slots for salon=%s master=%s date=%s: %d free of %d", salon_id, master_id, target_date, sum(s.available for s in slots), len(slots))
    return slots


async def plan_for_services(salon_id: int, service_ids: Sequence[int]) -> DurationPlan:
    async with get_session() as session:
        services = await SalonRepo.get_services(session, salon_id, service_ids)
    return plan_duration(services)


async def check_run(
    salon_id: int,
    master_id: int | str,
    target_date: date,
    start_time: str,
    service_ids: Sequence[int],
    *,
    now: datetime | None = None,
) -> list[str]:
    """Advisory pre-check of a run before commit; the commit re-validates.

    With ANY the run must fit one master's schedule end to end.
    """
    plan = await plan_for_services(salon_id, service_ids)
    per_master = await get_master_slots(salon_id, master_id, target_date, now=now)
    return find_run_in_any(list(per_master.values()), start_time, plan.required_slots)


# ---------------- Commit path ---------------- #
def _validate_request(request: BookingRequest, config: SlotConfig) -> str:
    validate_contact(request.contact)
    if int(request.duration_minutes) <= 0:
        raise InvalidDurationError()
    try:
        start = to_hm(request.time)
    except ValueError as e:
        raise SlotUnavailableError("Некоректний час.", code="invalid_time") from e
    if not config.is_aligned(start):
        raise SlotUnavailableError("Час має збігатися з початком слоту.", code="invalid_time")
    return start


def _check_within_hours(salon: Salon, target_date: date, start: str, end: str) -> None:
    interval = day_interval(salon.working_hours, target_date)
    if interval is None:
        raise SlotUnavailableError("Салон зачинений у цей день.", code="salon_closed")
    open_time, close_time = interval
    if start < open_time or end > close_time:
        raise SlotUnavailableError(
            f"Запис має вкладатися в робочі години {open_time}–{close_time}.",
            code="outside_working_hours",
        )


async def _candidate_masters(session: AsyncSession, salon_id: int, master_id: int | str) -> list[int]:
    if master_id == ANY_SPECIALIST:
        masters = await SalonRepo.list_masters(session, salon_id)
        if not masters:
            raise NotFoundError("У салоні немає доступних фахівців.")
        return [m.id for m in masters]
    master = await session.get(Master, int(master_id))
    if master is None or master.salon_id != int(salon_id) or not master.is_active:
        raise NotFoundError("Фахівця не знайдено.")
    return [master.id]


async def commit_booking(
    request: BookingRequest,
    *,
    status: BookingStatus | str | None = None,
    now: datetime | None = None,
    config: SlotConfig | None = None,
) -> Booking:
    """Create a booking and its blocking record as one transaction.

    Returns the existing booking when ``request.idempotency_key`` was already
    committed. Raises SlotConflictError when the interval is taken (either by
    the re-check or by the storage constraint), SlotUnavailableError when the
    run leaves the salon's working hours.
    """
    config = config or get_slot_config()
    now = now or local_now()
    start = _validate_request(request, config)
    initial_status = normalize_booking_status(status or DEFAULT_BOOKING_STATUS) or BookingStatus.PENDING
    if initial_status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
        raise InvalidStatusTransitionError()

    async with get_session() as session:
        try:
            if request.idempotency_key:
                existing = await BookingRepo.get_by_idempotency_key(session, request.idempotency_key)
                if existing is not None:
                    logger.info("Idempotent replay for key=%s -> booking %s", request.idempotency_key, existing.id)
                    return existing

            salon = await SalonRepo.get(session, request.salon_id)
            if salon is None or not salon.is_active:
                raise NotFoundError("Салон не знайдено.")
            services = await SalonRepo.get_services(session, salon.id, request.service_ids)

            plan = plan_duration(services, config=config)
            duration = plan.rounded_duration_minutes
            if int(request.duration_minutes) != duration:
                logger.warning(
                    "Requested duration %s differs from services plan %s; using plan",
                    request.duration_minutes, duration,
                )
            end = add_minutes_hm(start, duration)
            if parse_hm(start) + duration > 24 * 60:
                raise SlotUnavailableError(code="outside_working_hours")

            if _outside_booking_window(request.date, now):
                raise SlotUnavailableError("Дата поза межами запису.", code="outside_booking_window")
            cutoff = _today_cutoff(now, request.date, config)
            if cutoff is not None and start < cutoff:
                raise SlotUnavailableError("Цей час уже минув.", code="slot_in_past")
            _check_within_hours(salon, request.date, start, end)

            chosen: int | None = None
            for candidate in await _candidate_masters(session, salon.id, request.master_id):
                await _lock_master_day(session, candidate, request.date)
                blocks = await ScheduleRepo.get_schedule_blocks(session, salon.id, candidate, request.date)
                if not _overlapping(blocks, start, end):
                    chosen = candidate
                    break
            if chosen is None:
                raise SlotConflictError()

            booking = Booking(
                salon_id=salon.id,
                master_id=chosen,
                service_id=services[0].id,
                client_name=request.contact.full_name,
                client_phone=request.contact.phone.strip(),
                client_email=request.contact.email,
                notes=request.contact.notes,
                date=request.date,
                time=hm_to_time(start),
                duration_minutes=duration,
                price=sum((Decimal(str(s.price or 0)) for s in services), Decimal("0")),
                status=initial_status,
                notification_sent=False,
                idempotency_key=request.idempotency_key,
            )
            session.add(booking)
            await session.flush()

            for position, svc in enumerate(services):
                session.add(BookingItem(booking_id=booking.id, service_id=svc.id, position=position))
            session.add(
                ScheduleBlock(
                    salon_id=salon.id,
                    master_id=chosen,
                    date=request.date,
                    time_start=hm_to_time(start),
                    time_end=hm_to_time(end),
                    is_blocked=True,
                    blocked_reason=BlockReason.BOOKED,
                    booking_id=booking.id,
                )
            )
            session.add(BookingEvent(booking_id=booking.id, event_type=BookingEventType.BOOKING_CREATED))
            await session.commit()
        except IntegrityError as ie:
            await session.rollback()
            logger.info("IntegrityError while committing booking (slot likely taken): %s", ie)
            if request.idempotency_key:
                existing = await BookingRepo.get_by_idempotency_key(session, request.idempotency_key)
                if existing is not None:
                    return existing
            raise SlotConflictError() from ie
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(
                "Ошибка создания записи: salon=%s master=%s date=%s time=%s error=%s",
                request.salon_id, request.master_id, request.date, request.time, e,
            )
            raise

    logger.info(
        "Создана запись №%s: salon=%s master=%s date=%s %s-%s (%s хв)",
        booking.id, booking.salon_id, booking.master_id, booking.date, start, end, duration,
    )
    return booking


async def cancel_booking(booking_id: int) -> Booking:
    """Cancel a booking and free its interval in the same transaction.

    Cancelling an already-cancelled booking is a no-op.
    """
    async with get_session() as session:
        booking = await session.get(Booking, int(booking_id))
        if booking is None:
            raise NotFoundError()
        if booking.status == BookingStatus.CANCELLED:
            # Heal a stray block left by an interrupted legacy write
            removed = await ScheduleRepo.delete_schedule_blocks_for_booking(session, booking.id)
            if removed:
                logger.warning("Removed %d stray block(s) of cancelled booking %s", removed, booking.id)
                await session.commit()
            return booking
        if booking.status == BookingStatus.COMPLETED:
            raise InvalidStatusTransitionError("Завершений запис не можна скасувати.")

        booking.status = BookingStatus.CANCELLED
        await ScheduleRepo.delete_schedule_blocks_for_booking(session, booking.id)
        session.add(BookingEvent(booking_id=booking.id, event_type=BookingEventType.BOOKING_CANCELLED))
        await session.commit()
    logger.info("Запис №%s скасовано, слот звільнено", booking_id)
    return booking


_ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.COMPLETED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}


async def set_booking_status(booking_id: int, status: BookingStatus | str) -> Booking:
    """Owner-side status change following the booking lifecycle."""
    target = normalize_booking_status(status)
    if target is None:
        raise InvalidStatusTransitionError(f"Невідомий статус: {status}")
    if target == BookingStatus.CANCELLED:
        return await cancel_booking(booking_id)

    async with get_session() as session:
        booking = await session.get(Booking, int(booking_id))
        if booking is None:
            raise NotFoundError()
        if booking.status == target:
            return booking
        if target not in _ALLOWED_TRANSITIONS[booking.status]:
            raise InvalidStatusTransitionError(
                f"Перехід {booking.status.value} -> {target.value} неможливий."
            )
        booking.status = target
        await session.commit()
    logger.info("Запис №%s: статус -> %s", booking_id, target.value)
    return booking


__all__ = [
    "SalonRepo",
    "ScheduleRepo",
    "BookingRepo",
    "compute_day_slots",
    "get_available_slots",
    "get_master_slots",
    "plan_for_services",
    "check_run",
    "commit_booking",
    "cancel_booking",
    "set_booking_status",
]
