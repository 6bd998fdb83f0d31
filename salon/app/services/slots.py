"""Slot grid helpers: generation, availability filtering, duration planning.

Everything here is pure and synchronous over already-fetched data. The slot
width lives in one place (``SlotConfig``) and is passed in explicitly.

Times are zero-padded 24-hour ``HH:MM`` strings, so lexical comparison equals
chronological comparison within a day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import time as dtime
from functools import lru_cache
from math import ceil
from typing import Any, Iterable, Mapping, Sequence

from salon.app.core.constants import DEFAULT_SERVICE_FALLBACK_DURATION, SLOT_STEP_CHOICES, SLOT_STEP_MINUTES
from salon.app.core.errors import InvalidDurationError, SlotUnavailableError
from salon.app.services.shared_services import _minutes_to_hm, parse_hm, to_hm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotConfig:
    """
    Scheduling grid configuration.

    Attributes:
        slot_step_minutes: Width of one bookable slot (15/30/60)
        fallback_service_minutes: Duration assumed for services without one
    """
    slot_step_minutes: int = 30
    fallback_service_minutes: int = 30

    def __post_init__(self):
        if self.slot_step_minutes not in SLOT_STEP_CHOICES:
            raise ValueError(f"slot_step_minutes must be 15, 30, or 60, got {self.slot_step_minutes}")
        if self.fallback_service_minutes <= 0:
            raise ValueError("fallback_service_minutes must be positive")

    def is_aligned(self, hm: str) -> bool:
        minutes = parse_hm(hm)
        return minutes is not None and minutes % self.slot_step_minutes == 0


@lru_cache
def get_slot_config() -> SlotConfig:
    """Process-wide grid configuration built from environment constants."""
    return SlotConfig(
        slot_step_minutes=SLOT_STEP_MINUTES,
        fallback_service_minutes=DEFAULT_SERVICE_FALLBACK_DURATION,
    )


@dataclass(frozen=True)
class Slot:
    time: str
    available: bool

    def as_dict(self) -> dict[str, Any]:
        return {"time": self.time, "available": self.available}


@dataclass(frozen=True)
class DurationPlan:
    total_minutes: int
    required_slots: int
    rounded_duration_minutes: int


# ---------------- Slot generation ---------------- #
def generate_slots(open_time: str, close_time: str, interval_minutes: int | None = None) -> list[str]:
    """Ordered slot start times covering [open_time, close_time).

    A trailing partial slot is not emitted, so every slot starts strictly
    before close_time.
    """
    step = interval_minutes or get_slot_config().slot_step_minutes
    if step <= 0:
        raise ValueError("interval_minutes must be positive")
    current = parse_hm(open_time)
    end_total = parse_hm(close_time)
    if current is None or end_total is None:
        raise ValueError(f"invalid interval: {open_time!r} - {close_time!r}")

    slots: list[str] = []
    while current + step <= end_total:
        slots.append(_minutes_to_hm(current))
        current += step
    return slots


# ---------------- Availability ---------------- #
def _block_field(block: Any, name: str) -> Any:
    if isinstance(block, Mapping):
        return block.get(name)
    return getattr(block, name, None)


def _block_interval(block: Any) -> tuple[str, str] | None:
    if _block_field(block, "is_blocked") is False:
        return None
    start, end = _block_field(block, "time_start"), _block_field(block, "time_end")
    if start is None or end is None:
        return None
    try:
        return to_hm(start), to_hm(end)
    except ValueError:
        logger.warning("Skipping schedule block with bad interval: %r - %r", start, end)
        return None


def filter_available(slot_times: Iterable[str], blocks: Iterable[Any]) -> list[Slot]:
    """Annotate each slot with availability against blocking records.

    A slot is unavailable iff its start lies in [time_start, time_end) of a
    block; a slot equal to time_end is free (back-to-back bookings are legal).
    """
    intervals = [iv for iv in (_block_interval(b) for b in blocks) if iv is not None]
    return [
        Slot(time=t, available=not any(start <= t < end for start, end in intervals))
        for t in slot_times
    ]


def mark_unavailable_before(slots: Sequence[Slot], cutoff: str) -> list[Slot]:
    """Same-day helper: slots starting before ``cutoff`` cannot be picked."""
    return [Slot(s.time, s.available and s.time >= cutoff) for s in slots]


# ---------------- Duration planning ---------------- #
def _service_duration(service: Any) -> int | None:
    if isinstance(service, (int, float)):
        return int(service)
    if isinstance(service, Mapping):
        return service.get("duration_minutes")
    return getattr(service, "duration_minutes", None)


def plan_duration(services: Sequence[Any], slot_minutes: int | None = None, *, config: SlotConfig | None = None) -> DurationPlan:
    """Map selected services to the contiguous slot count they need.

    Services run one after another; a missing duration counts as the
    fallback (30 min by default). Rounding is always up to a full slot.
    """
    config = config or get_slot_config()
    step = slot_minutes or config.slot_step_minutes
    if not services:
        raise InvalidDurationError("Оберіть хоча б одну послугу.")

    total = 0
    for service in services:
        duration = _service_duration(service)
        if duration is None:
            # NOTE: preserved default; may hide a missing duration in the catalogue
            logger.debug("Service %r has no duration; assuming %s min", service, config.fallback_service_minutes)
            duration = config.fallback_service_minutes
        if int(duration) <= 0:
            raise InvalidDurationError(f"Некоректна тривалість послуги: {duration}")
        total += int(duration)

    required = ceil(total / step)
    return DurationPlan(total_minutes=total, required_slots=required, rounded_duration_minutes=required * step)


# ---------------- Contiguity ---------------- #
def find_contiguous_run(
    slots: Sequence[Slot],
    start_time: str | dtime,
    required_slots: int,
    *,
    slot_minutes: int | None = None,
) -> list[str]:
    """Return the ``required_slots`` consecutive slot times starting at ``start_time``.

    All-or-nothing: raises SlotUnavailableError when the start is unknown, the
    run leaves the generated grid, or any slot in it is taken.
    """
    step = slot_minutes or get_slot_config().slot_step_minutes
    try:
        start = to_hm(start_time)
    except ValueError as e:
        raise SlotUnavailableError("Некоректний час.", code="invalid_time") from e
    index = next((i for i, s in enumerate(slots) if s.time == start), None)
    error = SlotUnavailableError(required_slots=required_slots, rounded_duration_minutes=required_slots * step)
    if index is None or required_slots <= 0:
        raise error

    run = list(slots[index:index + required_slots])
    if len(run) < required_slots or not all(s.available for s in run):
        raise error
    # The grid is gap-free only within one opening interval
    for prev, cur in zip(run, run[1:]):
        if parse_hm(cur.time) - parse_hm(prev.time) != step:
            raise error
    return [s.time for s in run]


def find_run_in_any(
    candidates: Sequence[Sequence[Slot]],
    start_time: str | dtime,
    required_slots: int,
    *,
    slot_minutes: int | None = None,
) -> list[str]:
    """Like ``find_contiguous_run``, but one of ``candidates`` must hold the whole run.

    Each candidate is one master's own slot list, so a run stitched together
    from different masters is rejected.
    """
    try:
        start_time = to_hm(start_time)
    except ValueError as e:
        raise SlotUnavailableError("Некоректний час.", code="invalid_time") from e
    error: SlotUnavailableError | None = None
    for slots in candidates:
        try:
            return find_contiguous_run(slots, start_time, required_slots, slot_minutes=slot_minutes)
        except SlotUnavailableError as exc:
            error = exc
    if error is None:
        step = slot_minutes or get_slot_config().slot_step_minutes
        error = SlotUnavailableError(required_slots=required_slots, rounded_duration_minutes=required_slots * step)
    raise error


__all__ = [
    "SlotConfig",
    "get_slot_config",
    "Slot",
    "DurationPlan",
    "generate_slots",
    "filter_available",
    "mark_unavailable_before",
    "plan_duration",
    "find_contiguous_run",
    "find_run_in_any",
]
