"""Business errors raised by the scheduling core.

Every error is a ``ValueError`` carrying a stable ``code`` (safe to send to
clients) and a user-facing ``message``. Data-quality problems in working
hours and notification delivery failures are logged where they happen and
never raised.
"""

from __future__ import annotations

__all__ = [
    "BookingError",
    "SlotUnavailableError",
    "SlotConflictError",
    "ContactValidationError",
    "InvalidDurationError",
    "FlowError",
    "InvalidStatusTransitionError",
    "NotFoundError",
]


class BookingError(ValueError):
    code: str = "booking_failed"
    retryable: bool = False
    default_message: str = "Не вдалося створити бронювання."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)

    def as_dict(self) -> dict[str, object]:
        return {"ok": False, "error": self.code, "message": self.message, "retryable": self.retryable}


class SlotUnavailableError(BookingError):
    """Requested contiguous run is not fully free (or falls outside opening hours)."""

    code = "slot_unavailable"
    default_message = "Обраний час недоступний. Оберіть інший час."

    def __init__(
        self,
        message: str | None = None,
        *,
        required_slots: int | None = None,
        rounded_duration_minutes: int | None = None,
        code: str | None = None,
    ) -> None:
        self.required_slots = required_slots
        self.rounded_duration_minutes = rounded_duration_minutes
        if message is None and required_slots is not None:
            message = (
                f"Потрібно {required_slots} слотів підряд "
                f"({rounded_duration_minutes} хв). Оберіть інший час."
            )
        super().__init__(message, code=code)


class SlotConflictError(BookingError):
    """Storage rejected the commit because another booking took the interval."""

    code = "slot_conflict"
    retryable = True
    default_message = "Цей час щойно зайняли. Оберіть інший час."


class ContactValidationError(BookingError):
    code = "invalid_contact"
    default_message = "Вкажіть ім'я, прізвище та номер телефону."


class InvalidDurationError(BookingError):
    code = "invalid_duration"
    default_message = "Оберіть хоча б одну послугу з коректною тривалістю."


class FlowError(BookingError):
    code = "invalid_transition"
    default_message = "Цей крок зараз недоступний."


class InvalidStatusTransitionError(BookingError):
    code = "invalid_status"
    default_message = "Неможливо змінити статус бронювання."


class NotFoundError(BookingError):
    code = "not_found"
    default_message = "Запис не знайдено."
