"""Booking wizard state machine.

The multi-step booking selection (services -> specialist -> time -> contact
details -> done) is an immutable ``BookingFlow`` value. Every user action is
an event and ``apply(flow, event)`` returns the next flow or raises
``FlowError``/``ContactValidationError``. No I/O happens here: slot lists are
fetched by the caller and passed in with ``ChooseDate``, and the final commit
is awaited in ``confirm_booking``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from enum import IntEnum
from typing import Awaitable, Callable, Sequence

from salon.app.core.constants import MIN_PHONE_DIGITS
from salon.app.core.errors import BookingError, ContactValidationError, FlowError, SlotUnavailableError
from salon.app.services.shared_services import count_digits
from salon.app.services.slots import DurationPlan, Slot, SlotConfig, find_run_in_any, get_slot_config, plan_duration

logger = logging.getLogger(__name__)

ANY_SPECIALIST = "any"


class FlowStep(IntEnum):
    SELECTING_SERVICES = 0
    SELECTING_SPECIALIST = 1
    SELECTING_TIME = 2
    CONFIRMING_DETAILS = 3
    DONE = 4


STEP_LABELS = {
    FlowStep.SELECTING_SERVICES: "Послуги",
    FlowStep.SELECTING_SPECIALIST: "Фахівець",
    FlowStep.SELECTING_TIME: "Час",
    FlowStep.CONFIRMING_DETAILS: "Підтвердження",
    FlowStep.DONE: "Готово",
}


@dataclass(frozen=True)
class ServiceChoice:
    id: int
    duration_minutes: int | None = None
    price: float = 0


@dataclass(frozen=True)
class ContactDetails:
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    email: str | None = None
    notes: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name.strip()} {self.last_name.strip()}".strip()


@dataclass(frozen=True)
class BookingRequest:
    """Fully specified booking handed to the committer."""

    salon_id: int
    master_id: int | str
    service_ids: tuple[int, ...]
    date: date
    time: str
    duration_minutes: int
    contact: ContactDetails
    idempotency_key: str | None = None


# ---------------- Events ---------------- #
@dataclass(frozen=True)
class ToggleService:
    service: ServiceChoice


@dataclass(frozen=True)
class ChooseSpecialist:
    master_id: int | str


@dataclass(frozen=True)
class ChooseDate:
    date: date
    slots: tuple[Slot, ...]
    # One list per active master when the specialist is ANY_SPECIALIST
    master_slots: tuple[tuple[Slot, ...], ...] = ()


@dataclass(frozen=True)
class SelectStartTime:
    time: str


@dataclass(frozen=True)
class SetContact:
    first_name: str
    last_name: str
    phone: str
    email: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class GoToStep:
    step: FlowStep


@dataclass(frozen=True)
class RequestClose:
    pass


@dataclass(frozen=True)
class ConfirmDiscard:
    pass


@dataclass(frozen=True)
class KeepEditing:
    pass


@dataclass(frozen=True)
class BookingCommitted:
    booking_id: int


# ---------------- State ---------------- #
@dataclass(frozen=True)
class BookingFlow:
    step: FlowStep = FlowStep.SELECTING_SERVICES
    completed: frozenset[FlowStep] = frozenset()
    services: tuple[ServiceChoice, ...] = ()
    specialist: int | str | None = None
    date: date | None = None
    slots: tuple[Slot, ...] = ()
    master_slots: tuple[tuple[Slot, ...], ...] = ()
    selected_times: tuple[str, ...] = ()
    slot_error: str | None = None
    contact: ContactDetails = field(default_factory=ContactDetails)
    discard_pending: bool = False
    closed: bool = False
    booking_id: int | None = None
    config: SlotConfig = field(default_factory=get_slot_config)

    @property
    def plan(self) -> DurationPlan | None:
        if not self.services:
            return None
        return plan_duration(self.services, config=self.config)

    @property
    def required_slots(self) -> int:
        plan = self.plan
        return plan.required_slots if plan else 0

    @property
    def has_selections(self) -> bool:
        return bool(self.services) or self.specialist is not None or self.date is not None

    @property
    def start_time(self) -> str | None:
        return self.selected_times[0] if self.selected_times else None

    def can_proceed(self) -> bool:
        try:
            _check_guard(self)
        except BookingError:
            return False
        return True

    def to_booking_request(self, salon_id: int, *, idempotency_key: str | None = None) -> BookingRequest:
        plan = self.plan
        if plan is None or self.date is None or not self.selected_times or self.specialist is None:
            raise FlowError("Бронювання ще не заповнене.")
        return BookingRequest(
            salon_id=salon_id,
            master_id=self.specialist,
            service_ids=tuple(s.id for s in self.services),
            date=self.date,
            time=self.selected_times[0],
            duration_minutes=plan.rounded_duration_minutes,
            contact=self.contact,
            idempotency_key=idempotency_key,
        )


# ---------------- Guards ---------------- #
def validate_contact(contact: ContactDetails, min_digits: int = MIN_PHONE_DIGITS) -> None:
    if not contact.first_name.strip() or not contact.last_name.strip():
        raise ContactValidationError("Вкажіть ім'я та прізвище.")
    if count_digits(contact.phone) < min_digits:
        raise ContactValidationError(f"Номер телефону має містити щонайменше {min_digits} цифр.")


def _check_guard(flow: BookingFlow) -> None:
    step = flow.step
    if step == FlowStep.SELECTING_SERVICES:
        if not flow.services:
            raise FlowError("Оберіть хоча б одну послугу.")
    elif step == FlowStep.SELECTING_SPECIALIST:
        if flow.specialist is None:
            raise FlowError("Оберіть фахівця.")
    elif step == FlowStep.SELECTING_TIME:
        if flow.date is None:
            raise FlowError("Оберіть дату.")
        required = flow.required_slots
        if len(flow.selected_times) != required:
            raise FlowError(f"Потрібно обрати {required} слотів підряд.")
        # Re-validate against the current slot list
        _find_run(flow, flow.selected_times[0])
    elif step == FlowStep.CONFIRMING_DETAILS:
        validate_contact(flow.contact)
    else:
        raise FlowError("Бронювання вже завершено.")


def _find_run(flow: BookingFlow, start_time: str) -> list[str]:
    candidates = flow.master_slots or (flow.slots,)
    return find_run_in_any(candidates, start_time, flow.required_slots, slot_minutes=flow.config.slot_step_minutes)


def _require_step(flow: BookingFlow, *steps: FlowStep) -> None:
    if flow.closed:
        raise FlowError("Бронювання закрито.")
    if flow.step not in steps:
        raise FlowError(f"Дія недоступна на кроці «{STEP_LABELS[flow.step]}».")


# ---------------- Transitions ---------------- #
def _toggle_service(flow: BookingFlow, event: ToggleService) -> BookingFlow:
    _require_step(flow, FlowStep.SELECTING_SERVICES)
    ids = {s.id for s in flow.services}
    if event.service.id in ids:
        services = tuple(s for s in flow.services if s.id != event.service.id)
    else:
        if event.service.duration_minutes is not None and event.service.duration_minutes <= 0:
            raise FlowError("Послуга має некоректну тривалість.")
        services = flow.services + (event.service,)
    # Required slot count changed: an earlier time pick no longer fits
    return replace(flow, services=services, selected_times=(), slot_error=None)


def _choose_specialist(flow: BookingFlow, event: ChooseSpecialist) -> BookingFlow:
    _require_step(flow, FlowStep.SELECTING_SPECIALIST)
    if event.master_id is None or event.master_id == "":
        raise FlowError("Оберіть фахівця.")
    if event.master_id == flow.specialist:
        return flow
    # Availability is per master: drop the date-dependent selection
    return replace(flow, specialist=event.master_id, date=None, slots=(), master_slots=(), selected_times=(), slot_error=None)


def _choose_date(flow: BookingFlow, event: ChooseDate) -> BookingFlow:
    _require_step(flow, FlowStep.SELECTING_TIME)
    return replace(
        flow,
        date=event.date,
        slots=tuple(event.slots),
        master_slots=tuple(tuple(s) for s in event.master_slots),
        selected_times=(),
        slot_error=None,
    )


def _select_start(flow: BookingFlow, event: SelectStartTime) -> BookingFlow:
    _require_step(flow, FlowStep.SELECTING_TIME)
    if flow.date is None:
        raise FlowError("Спочатку оберіть дату.")
    try:
        run = _find_run(flow, event.time)
    except SlotUnavailableError as exc:
        logger.debug("Slot run rejected at %s: %s", event.time, exc.message)
        return replace(flow, selected_times=(), slot_error=exc.message)
    return replace(flow, selected_times=tuple(run), slot_error=None)


def _set_contact(flow: BookingFlow, event: SetContact) -> BookingFlow:
    _require_step(flow, FlowStep.CONFIRMING_DETAILS)
    contact = ContactDetails(
        first_name=event.first_name,
        last_name=event.last_name,
        phone=event.phone,
        email=event.email,
        notes=event.notes,
    )
    return replace(flow, contact=contact)


def _next(flow: BookingFlow) -> BookingFlow:
    _require_step(flow, FlowStep.SELECTING_SERVICES, FlowStep.SELECTING_SPECIALIST, FlowStep.SELECTING_TIME)
    _check_guard(flow)
    return replace(flow, step=FlowStep(flow.step + 1), completed=flow.completed | {flow.step})


def _back(flow: BookingFlow) -> BookingFlow:
    _require_step(flow, FlowStep.SELECTING_SPECIALIST, FlowStep.SELECTING_TIME, FlowStep.CONFIRMING_DETAILS)
    return replace(flow, step=FlowStep(flow.step - 1))


def _go_to(flow: BookingFlow, event: GoToStep) -> BookingFlow:
    _require_step(flow, FlowStep.SELECTING_SPECIALIST, FlowStep.SELECTING_TIME, FlowStep.CONFIRMING_DETAILS)
    target = FlowStep(event.step)
    if target >= flow.step or target not in flow.completed:
        raise FlowError("Можна повернутися лише до завершеного кроку.")
    return replace(flow, step=target)


def _request_close(flow: BookingFlow) -> BookingFlow:
    if flow.has_selections and flow.step != FlowStep.DONE:
        return replace(flow, discard_pending=True)
    return BookingFlow(closed=True, config=flow.config)


def _confirm_discard(flow: BookingFlow) -> BookingFlow:
    if not flow.discard_pending:
        raise FlowError("Немає запиту на закриття.")
    return BookingFlow(closed=True, config=flow.config)


def _keep_editing(flow: BookingFlow) -> BookingFlow:
    return replace(flow, discard_pending=False)


def _committed(flow: BookingFlow, event: BookingCommitted) -> BookingFlow:
    _require_step(flow, FlowStep.CONFIRMING_DETAILS)
    validate_contact(flow.contact)
    return replace(
        flow,
        step=FlowStep.DONE,
        completed=flow.completed | {FlowStep.CONFIRMING_DETAILS},
        booking_id=event.booking_id,
        discard_pending=False,
    )


def apply(flow: BookingFlow, event: object) -> BookingFlow:
    """Return the flow after ``event``; invalid events raise FlowError."""
    if flow.discard_pending and not isinstance(event, (ConfirmDiscard, KeepEditing, RequestClose)):
        raise FlowError("Підтвердіть або скасуйте закриття.")
    if isinstance(event, ToggleService):
        return _toggle_service(flow, event)
    if isinstance(event, ChooseSpecialist):
        return _choose_specialist(flow, event)
    if isinstance(event, ChooseDate):
        return _choose_date(flow, event)
    if isinstance(event, SelectStartTime):
        return _select_start(flow, event)
    if isinstance(event, SetContact):
        return _set_contact(flow, event)
    if isinstance(event, Next):
        return _next(flow)
    if isinstance(event, Back):
        return _back(flow)
    if isinstance(event, GoToStep):
        return _go_to(flow, event)
    if isinstance(event, RequestClose):
        return _request_close(flow)
    if isinstance(event, ConfirmDiscard):
        return _confirm_discard(flow)
    if isinstance(event, KeepEditing):
        return _keep_editing(flow)
    if isinstance(event, BookingCommitted):
        return _committed(flow, event)
    raise FlowError(f"Unknown event: {type(event).__name__}")


def apply_all(flow: BookingFlow, events: Sequence[object]) -> BookingFlow:
    for event in events:
        flow = apply(flow, event)
    return flow


async def confirm_booking(
    flow: BookingFlow,
    salon_id: int,
    commit: Callable[[BookingRequest], Awaitable[object]],
    *,
    idempotency_key: str | None = None,
) -> BookingFlow:
    """Validate the details step, commit the booking and move to DONE.

    Contact errors are raised before ``commit`` is called. Commit errors
    (SlotConflictError and friends) propagate with the flow unchanged so the
    user can pick another time.
    """
    _require_step(flow, FlowStep.CONFIRMING_DETAILS)
    if flow.discard_pending:
        raise FlowError("Підтвердіть або скасуйте закриття.")
    validate_contact(flow.contact)
    request = flow.to_booking_request(salon_id, idempotency_key=idempotency_key)
    booking = await commit(request)
    booking_id = int(getattr(booking, "id", booking))
    return apply(flow, BookingCommitted(booking_id=booking_id))


__all__ = [
    "ANY_SPECIALIST",
    "FlowStep",
    "STEP_LABELS",
    "ServiceChoice",
    "ContactDetails",
    "BookingRequest",
    "BookingFlow",
    "ToggleService",
    "ChooseSpecialist",
    "ChooseDate",
    "SelectStartTime",
    "SetContact",
    "Next",
    "Back",
    "GoToStep",
    "RequestClose",
    "ConfirmDiscard",
    "KeepEditing",
    "BookingCommitted",
    "validate_contact",
    "apply",
    "apply_all",
    "confirm_booking",
]
