from datetime import UTC, date as _date, datetime, time as _time
from decimal import Decimal
from enum import Enum as _Enum
from typing import Any

from sqlalchemy import (
    DDL,
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class (explicit for mypy)."""

    pass


class BookingStatus(_Enum):  # Values match DB labels
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class UserRole(_Enum):
    SUPER_ADMIN = "super_admin"
    SALON_OWNER = "salon_owner"


class BlockReason(_Enum):
    BOOKED = "booked"
    DAY_OFF = "day_off"
    MANUAL = "manual"


class BookingEventType(_Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_CANCELLED = "booking_cancelled"


def normalize_booking_status(value: str | BookingStatus | None) -> BookingStatus | None:
    """Return a BookingStatus enum when possible (accepts strings/enum values)."""
    if isinstance(value, BookingStatus):
        return value
    if isinstance(value, str):
        try:
            return BookingStatus(value.strip().lower())
        except ValueError:
            try:
                return BookingStatus[value.strip().upper()]
            except KeyError:
                return None
    return None


TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.CANCELLED,
        BookingStatus.COMPLETED,
    }
)

ACTIVE_STATUSES = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    }
)


def _enum_column(enum_cls: type[_Enum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda e: [m.value for m in e],  # persist lowercase labels
        native_enum=False,
        validate_strings=True,
    )


def _utcnow() -> datetime:
    return datetime.now(UTC)


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    role: Mapped[UserRole] = mapped_column(_enum_column(UserRole, "user_role"), default=UserRole.SALON_OWNER)
    # Telegram chat for booking notifications; NULL means not subscribed
    telegram_chat_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Salon(Base):
    __tablename__ = "salons"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(String(300), nullable=True)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # [{"day": "Понеділок", "hours": "10:00 - 20:00"}, {"day": "Неділя", "hours": "Зачинено"}, ...]
    working_hours: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Service(Base):
    __tablename__ = "services"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    salon_id: Mapped[int] = mapped_column(ForeignKey("salons.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    # Nullable for legacy rows: the planner falls back to the default duration
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class Master(Base):
    __tablename__ = "masters"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    salon_id: Mapped[int] = mapped_column(ForeignKey("salons.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    role: Mapped[str | None] = mapped_column(String(120), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_bookings_duration_positive"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    salon_id: Mapped[int] = mapped_column(ForeignKey("salons.id", ondelete="CASCADE"), index=True)
    master_id: Mapped[int] = mapped_column(ForeignKey("masters.id"), index=True)
    # Primary service; the rest of a bundle lives in booking_items
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"))
    client_name: Mapped[str] = mapped_column(String(200))
    client_phone: Mapped[str] = mapped_column(String(32))
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    date: Mapped[_date] = mapped_column(Date, index=True)
    time: Mapped[_time] = mapped_column(Time)
    duration_minutes: Mapped[int] = mapped_column(Integer)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus, "booking_status"),
        default=BookingStatus.PENDING,
    )
    notification_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Client-supplied key so a retried submit returns the original booking
    idempotency_key: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class BookingItem(Base):
    __tablename__ = "booking_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"))
    position: Mapped[int] = mapped_column(Integer, default=0)


class ScheduleBlock(Base):
    __tablename__ = "schedule"
    __table_args__ = (
        # Portable part of the no-double-booking guard; PostgreSQL also gets
        # the interval exclusion constraint below.
        UniqueConstraint("master_id", "date", "time_start", name="uq_schedule_master_date_start"),
        CheckConstraint("time_start < time_end", name="ck_schedule_interval"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    salon_id: Mapped[int] = mapped_column(ForeignKey("salons.id", ondelete="CASCADE"), index=True)
    # NULL = salon-wide block (day off, holiday)
    master_id: Mapped[int | None] = mapped_column(ForeignKey("masters.id", ondelete="CASCADE"), nullable=True)
    date: Mapped[_date] = mapped_column(Date, index=True)
    time_start: Mapped[_time] = mapped_column(Time)
    time_end: Mapped[_time] = mapped_column(Time)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    blocked_reason: Mapped[BlockReason | None] = mapped_column(_enum_column(BlockReason, "block_reason"), nullable=True)
    booking_id: Mapped[int | None] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class BookingEvent(Base):
    """Outbox row written in the same transaction as the booking change."""

    __tablename__ = "booking_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), index=True)
    event_type: Mapped[BookingEventType] = mapped_column(_enum_column(BookingEventType, "booking_event_type"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)


# PostgreSQL: blocks of one master must not overlap on a day. Mirrors the
# alembic revision so schemas created through init_db get the same guard.
event.listen(
    ScheduleBlock.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    ScheduleBlock.__table__,
    "after_create",
    DDL(
        "ALTER TABLE schedule ADD CONSTRAINT no_overlap_schedule_master_excl "
        "EXCLUDE USING gist (master_id WITH =, tsrange(date + time_start, date + time_end) WITH &&) "
        "WHERE (master_id IS NOT NULL AND is_blocked)"
    ).execute_if(dialect="postgresql"),
)


__all__ = [
    "Base",
    "User",
    "UserRole",
    "Salon",
    "Service",
    "Master",
    "BookingStatus",
    "Booking",
    "BookingItem",
    "BlockReason",
    "ScheduleBlock",
    "BookingEventType",
    "BookingEvent",
    "normalize_booking_status",
    "TERMINAL_STATUSES",
    "ACTIVE_STATUSES",
]
