"""FastAPI facade for the public storefront and the owner dashboard.

This layer wraps the scheduling services without touching business logic.
Business failures come back as ``{"ok": false, "error", "message"}`` bodies;
owner notifications are pushed as a background task after the response.
"""

from __future__ import annotations

import logging
import os
from datetime import date as _date
from decimal import Decimal
from functools import wraps
from typing import Any, Optional

from aiogram import Bot
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from salon.app.core.db import get_session
from salon.app.core.errors import BookingError, NotFoundError, SlotUnavailableError
from salon.app.core.notifications import create_bot
from salon.app.services import booking_services
from salon.app.services.booking_flow import ANY_SPECIALIST, BookingRequest, ContactDetails
from salon.app.services.booking_services import SalonRepo
from salon.app.services.shared_services import get_local_tz, local_now, to_hm
from salon.app.services.working_hours import resolve_working_hours
from salon.app.workers.notifications import notify_booking

logger = logging.getLogger(__name__)

ALLOW_ALL_ORIGINS = os.getenv("API_ALLOW_ALL_ORIGINS", "false").lower() in {"1", "true", "yes"}
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("API_ALLOWED_ORIGINS", "").split(",") if o.strip()]

_bot: Bot | None = None


def get_bot() -> Bot | None:
    """Lazily created Bot shared by background deliveries (None without a token)."""
    global _bot
    if _bot is None:
        _bot = create_bot()
    return _bot


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class NextOpenOut(BaseModel):
    day: str
    time: str
    date: _date


class MasterOut(BaseModel):
    id: int
    name: str
    role: Optional[str] = None


class ServiceOut(BaseModel):
    id: int
    name: str
    duration_minutes: Optional[int] = None
    price: Decimal


class SalonOut(BaseModel):
    id: int
    slug: str
    name: str
    type: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    working_hours: list[dict[str, Any]]
    is_open: bool
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    next_open: Optional[NextOpenOut] = None
    masters: list[MasterOut]
    services: list[ServiceOut]


class SlotOut(BaseModel):
    time: str
    available: bool


class SlotsResponse(BaseModel):
    date: _date
    slots: list[SlotOut]
    timezone: Optional[str] = None


class DurationRequest(BaseModel):
    salon_id: int
    service_ids: list[int] = Field(..., min_length=1)


class DurationResponse(BaseModel):
    total_minutes: int
    required_slots: int
    rounded_duration_minutes: int


class CheckSlotResponse(BaseModel):
    ok: bool = True
    available: bool
    times: list[str] = []
    error: Optional[str] = None
    message: Optional[str] = None


class BookPayload(BaseModel):
    salon_id: int
    master_id: int | str
    service_ids: list[int] = Field(..., min_length=1)
    date: _date
    time: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    first_name: str
    last_name: str
    phone: str
    email: Optional[str] = None
    notes: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=64)


class CancelRequest(BaseModel):
    booking_id: int


class StatusRequest(BaseModel):
    status: str


class BookingResponse(BaseModel):
    ok: bool
    booking_id: Optional[int] = None
    status: Optional[str] = None
    master_id: Optional[int] = None
    date: Optional[_date] = None
    time: Optional[str] = None
    duration_minutes: Optional[int] = None
    price: Optional[Decimal] = None
    error: Optional[str] = None
    message: Optional[str] = None
    retryable: Optional[bool] = None


# ---------------------------------------------------------------------------
# Error handling helpers
# ---------------------------------------------------------------------------

def booking_error_handler(default_error: str):
    """Decorator to de-duplicate try/except in booking endpoints.

    - Passes through FastAPI `HTTPException` untouched.
    - Converts `BookingError` to a BookingResponse with its code and message.
    - Logs unexpected exceptions and returns a unified error code.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except HTTPException:
                raise
            except BookingError as exc:
                return BookingResponse(**exc.as_dict())
            except Exception as exc:  # noqa: BLE001 - API boundary
                logger.exception("%s failed: %s", func.__name__, exc)
                return BookingResponse(ok=False, error=default_error)

        return wrapper

    return decorator


def _http_error(exc: BookingError) -> HTTPException:
    code = status.HTTP_404_NOT_FOUND if isinstance(exc, NotFoundError) else status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=exc.as_dict())


def _parse_master_id(value: str) -> int | str:
    if value == ANY_SPECIALIST:
        return ANY_SPECIALIST
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_master_id") from exc


def _parse_ids(raw: str) -> list[int]:
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_service_ids") from exc


def _booking_response(booking) -> BookingResponse:
    return BookingResponse(
        ok=True,
        booking_id=booking.id,
        status=booking.status.value,
        master_id=booking.master_id,
        date=booking.date,
        time=to_hm(booking.time),
        duration_minutes=booking.duration_minutes,
        price=booking.price,
    )


async def _deliver_in_background(booking_id: int) -> None:
    await notify_booking(booking_id, get_bot())


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(title="Salon Booking API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if ALLOW_ALL_ORIGINS else ALLOWED_ORIGINS,
    allow_credentials=not ALLOW_ALL_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/salons/{slug}", response_model=SalonOut)
async def get_salon(slug: str) -> SalonOut:
    salon = await SalonRepo.get_by_slug(slug)
    if salon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="salon_not_found")
    now = local_now()
    day = resolve_working_hours(salon.working_hours, now.date(), now)
    async with get_session() as session:
        masters = await SalonRepo.list_masters(session, salon.id)
        services = await SalonRepo.list_services(session, salon.id)
    next_open = None
    if day.next_open is not None:
        next_open = NextOpenOut(day=day.next_open.day, time=day.next_open.time, date=day.next_open.date)
    return SalonOut(
        id=salon.id,
        slug=salon.slug,
        name=salon.name,
        type=salon.type,
        phone=salon.phone,
        address=salon.address,
        working_hours=list(salon.working_hours or []),
        is_open=day.is_open,
        open_time=day.open_time,
        close_time=day.close_time,
        next_open=next_open,
        masters=[MasterOut(id=m.id, name=m.name, role=m.role) for m in masters],
        services=[
            ServiceOut(id=s.id, name=s.name, duration_minutes=s.duration_minutes, price=s.price)
            for s in services
        ],
    )


@app.get("/api/slots", response_model=SlotsResponse)
async def get_slots(
    salon_id: int,
    date: _date,
    master_id: str = Query(ANY_SPECIALIST),
) -> SlotsResponse:
    try:
        slots = await booking_services.get_available_slots(salon_id, _parse_master_id(master_id), date)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return SlotsResponse(
        date=date,
        slots=[SlotOut(**s.as_dict()) for s in slots],
        timezone=str(get_local_tz()),
    )


@app.post("/api/duration", response_model=DurationResponse)
async def get_duration(payload: DurationRequest) -> DurationResponse:
    try:
        plan = await booking_services.plan_for_services(payload.salon_id, payload.service_ids)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return DurationResponse(
        total_minutes=plan.total_minutes,
        required_slots=plan.required_slots,
        rounded_duration_minutes=plan.rounded_duration_minutes,
    )


@app.get("/api/check_slot", response_model=CheckSlotResponse)
async def check_slot(
    salon_id: int,
    date: _date,
    time: str,
    service_ids: str = Query(..., description="Comma separated ids, e.g. 1,2,3"),
    master_id: str = Query(ANY_SPECIALIST),
) -> CheckSlotResponse:
    """Return whether the run starting at ``time`` is currently free.

    Advisory only: the commit re-validates against storage.
    """
    try:
        times = await booking_services.check_run(
            salon_id, _parse_master_id(master_id), date, time, _parse_ids(service_ids)
        )
    except SlotUnavailableError as exc:
        return CheckSlotResponse(available=False, error=exc.code, message=exc.message)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return CheckSlotResponse(available=True, times=times)


@app.post("/api/book", response_model=BookingResponse)
@booking_error_handler("booking_failed")
async def create_booking(payload: BookPayload, background_tasks: BackgroundTasks) -> BookingResponse:
    master_id = payload.master_id
    if isinstance(master_id, str):
        master_id = _parse_master_id(master_id)
    request = BookingRequest(
        salon_id=payload.salon_id,
        master_id=master_id,
        service_ids=tuple(payload.service_ids),
        date=payload.date,
        time=payload.time,
        duration_minutes=(await booking_services.plan_for_services(payload.salon_id, payload.service_ids)).rounded_duration_minutes,
        contact=ContactDetails(
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
            email=payload.email,
            notes=payload.notes,
        ),
        idempotency_key=payload.idempotency_key,
    )
    booking = await booking_services.commit_booking(request)
    background_tasks.add_task(_deliver_in_background, booking.id)
    return _booking_response(booking)


@app.post("/api/cancel", response_model=BookingResponse)
@booking_error_handler("cancel_failed")
async def cancel_booking(payload: CancelRequest, background_tasks: BackgroundTasks) -> BookingResponse:
    booking = await booking_services.cancel_booking(payload.booking_id)
    background_tasks.add_task(_deliver_in_background, booking.id)
    return _booking_response(booking)


@app.post("/api/bookings/{booking_id}/status", response_model=BookingResponse)
@booking_error_handler("status_failed")
async def update_booking_status(
    booking_id: int, payload: StatusRequest, background_tasks: BackgroundTasks
) -> BookingResponse:
    booking = await booking_services.set_booking_status(booking_id, payload.status)
    background_tasks.add_task(_deliver_in_background, booking.id)
    return _booking_response(booking)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


def get_app() -> FastAPI:
    """Exported factory for uvicorn or tests."""
    return app
