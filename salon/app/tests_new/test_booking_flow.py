import asyncio
from datetime import date
from types import SimpleNamespace

import pytest

from salon.app.core.errors import ContactValidationError, FlowError, SlotConflictError
from salon.app.services import booking_flow as bf
from salon.app.services.slots import Slot, generate_slots

DAY = date(2030, 1, 14)
HAIRCUT = bf.ServiceChoice(id=1, duration_minutes=45, price=500)
STYLING = bf.ServiceChoice(id=2, duration_minutes=30, price=300)
NO_DURATION = bf.ServiceChoice(id=3, duration_minutes=None, price=400)


def _slots(*taken: str) -> tuple[Slot, ...]:
    return tuple(Slot(t, t not in taken) for t in generate_slots("10:00", "20:00", 30))


def _at_time_step(*services: bf.ServiceChoice) -> bf.BookingFlow:
    events = [bf.ToggleService(s) for s in services]
    events += [bf.Next(), bf.ChooseSpecialist(7), bf.Next(), bf.ChooseDate(DAY, _slots("15:00"))]
    return bf.apply_all(bf.BookingFlow(), events)


def _at_details_step() -> bf.BookingFlow:
    flow = _at_time_step(HAIRCUT, STYLING)
    return bf.apply_all(flow, [bf.SelectStartTime("10:00"), bf.Next()])


def test_initial_state():
    flow = bf.BookingFlow()
    assert flow.step is bf.FlowStep.SELECTING_SERVICES
    assert flow.can_proceed() is False
    assert flow.has_selections is False
    assert bf.STEP_LABELS[bf.FlowStep.DONE] == "Готово"


def test_next_requires_a_service():
    with pytest.raises(FlowError):
        bf.apply(bf.BookingFlow(), bf.Next())


def test_toggle_service_twice_removes_it():
    flow = bf.apply_all(bf.BookingFlow(), [bf.ToggleService(HAIRCUT), bf.ToggleService(HAIRCUT)])
    assert flow.services == ()


def test_required_slots_follow_selected_services():
    flow = bf.apply_all(bf.BookingFlow(), [bf.ToggleService(HAIRCUT), bf.ToggleService(STYLING)])
    assert flow.plan.total_minutes == 75
    assert flow.required_slots == 3
    assert flow.plan.rounded_duration_minutes == 90

    flow = bf.apply(bf.BookingFlow(), bf.ToggleService(NO_DURATION))
    assert flow.plan.total_minutes == 30
    assert flow.required_slots == 1


def test_select_start_commits_contiguous_run():
    flow = bf.apply(_at_time_step(HAIRCUT, STYLING), bf.SelectStartTime("10:00"))
    assert flow.selected_times == ("10:00", "10:30", "11:00")
    assert flow.slot_error is None
    assert flow.can_proceed() is True


def test_select_start_rejects_partial_fit_and_clears_selection():
    flow = bf.apply(_at_time_step(HAIRCUT, STYLING), bf.SelectStartTime("10:00"))
    flow = bf.apply(flow, bf.SelectStartTime("14:00"))
    assert flow.selected_times == ()
    assert flow.slot_error == "Потрібно 3 слотів підряд (90 хв). Оберіть інший час."
    with pytest.raises(FlowError):
        bf.apply(flow, bf.Next())


def test_select_start_rejects_run_past_closing():
    flow = bf.apply(_at_time_step(HAIRCUT, STYLING), bf.SelectStartTime("19:00"))
    assert flow.selected_times == ()
    assert flow.slot_error is not None


def test_choosing_new_specialist_resets_date_and_selection():
    flow = bf.apply(_at_time_step(HAIRCUT), bf.SelectStartTime("10:00"))
    flow = bf.apply_all(flow, [bf.Back(), bf.ChooseSpecialist(bf.ANY_SPECIALIST)])
    assert flow.specialist == bf.ANY_SPECIALIST
    assert flow.date is None
    assert flow.selected_times == ()


def test_toggling_service_after_time_pick_invalidates_selection():
    flow = bf.apply(_at_time_step(HAIRCUT), bf.SelectStartTime("10:00"))
    flow = bf.apply(flow, bf.GoToStep(bf.FlowStep.SELECTING_SERVICES))
    flow = bf.apply(flow, bf.ToggleService(STYLING))
    assert flow.selected_times == ()
    assert flow.required_slots == 3


def test_go_to_only_reaches_completed_earlier_steps():
    flow = _at_time_step(HAIRCUT)
    assert bf.apply(flow, bf.GoToStep(bf.FlowStep.SELECTING_SPECIALIST)).step is bf.FlowStep.SELECTING_SPECIALIST
    with pytest.raises(FlowError):
        bf.apply(flow, bf.GoToStep(bf.FlowStep.CONFIRMING_DETAILS))


def test_actions_outside_their_step_raise():
    with pytest.raises(FlowError):
        bf.apply(bf.BookingFlow(), bf.ChooseSpecialist(1))
    with pytest.raises(FlowError):
        bf.apply(bf.BookingFlow(), bf.Back())


def test_details_step_requires_valid_contact():
    flow = _at_details_step()
    assert flow.step is bf.FlowStep.CONFIRMING_DETAILS
    assert flow.can_proceed() is False

    flow = bf.apply(flow, bf.SetContact("Олена", "Коваль", "+38 (067) 12"))
    assert flow.can_proceed() is False

    flow = bf.apply(flow, bf.SetContact("Олена", "Коваль", "+38 067 123 45 67"))
    assert flow.can_proceed() is True


def test_validate_contact_messages():
    with pytest.raises(ContactValidationError):
        bf.validate_contact(bf.ContactDetails(first_name="", last_name="Коваль", phone="0671234567"))
    with pytest.raises(ContactValidationError):
        bf.validate_contact(bf.ContactDetails(first_name="Олена", last_name="Коваль", phone="12345678"))
    bf.validate_contact(bf.ContactDetails(first_name="Олена", last_name="Коваль", phone="123456789"))


def test_close_with_selections_asks_for_confirmation():
    flow = bf.apply(bf.BookingFlow(), bf.ToggleService(HAIRCUT))
    flow = bf.apply(flow, bf.RequestClose())
    assert flow.discard_pending is True
    assert flow.closed is False
    with pytest.raises(FlowError):
        bf.apply(flow, bf.Next())

    kept = bf.apply(flow, bf.KeepEditing())
    assert kept.discard_pending is False
    assert kept.services == (HAIRCUT,)

    discarded = bf.apply(flow, bf.ConfirmDiscard())
    assert discarded.closed is True
    assert discarded.services == ()


def test_close_without_selections_closes_immediately():
    flow = bf.apply(bf.BookingFlow(), bf.RequestClose())
    assert flow.closed is True
    assert flow.discard_pending is False


def test_confirm_booking_moves_to_done():
    flow = bf.apply(_at_details_step(), bf.SetContact("Олена", "Коваль", "0671234567"))
    seen = []

    async def commit(request):
        seen.append(request)
        return SimpleNamespace(id=42)

    done = asyncio.run(bf.confirm_booking(flow, 5, commit, idempotency_key="k-1"))
    assert done.step is bf.FlowStep.DONE
    assert done.booking_id == 42
    request = seen[0]
    assert request.salon_id == 5
    assert request.master_id == 7
    assert request.service_ids == (1, 2)
    assert request.time == "10:00"
    assert request.duration_minutes == 90
    assert request.idempotency_key == "k-1"

    # Done: closing needs no confirmation
    assert bf.apply(done, bf.RequestClose()).closed is True


def test_confirm_booking_invalid_contact_never_commits():
    flow = bf.apply(_at_details_step(), bf.SetContact("Олена", "", "0671234567"))

    async def commit(request):  # pragma: no cover - must not be called
        raise AssertionError("commit called")

    with pytest.raises(ContactValidationError):
        asyncio.run(bf.confirm_booking(flow, 5, commit))


def test_confirm_booking_conflict_keeps_flow():
    flow = bf.apply(_at_details_step(), bf.SetContact("Олена", "Коваль", "0671234567"))

    async def commit(request):
        raise SlotConflictError()

    with pytest.raises(SlotConflictError):
        asyncio.run(bf.confirm_booking(flow, 5, commit))
    assert flow.step is bf.FlowStep.CONFIRMING_DETAILS
    back = bf.apply(flow, bf.GoToStep(bf.FlowStep.SELECTING_TIME))
    assert back.step is bf.FlowStep.SELECTING_TIME


def test_select_malformed_time_is_rejected_not_raised():
    flow = bf.apply(_at_time_step(HAIRCUT), bf.SelectStartTime("9:7x"))
    assert flow.selected_times == ()
    assert flow.slot_error == "Некоректний час."


def test_any_specialist_run_is_checked_per_master():
    first = _slots("14:30")
    second = _slots("14:00")
    union = tuple(Slot(a.time, a.available or b.available) for a, b in zip(first, second))
    events = [
        bf.ToggleService(HAIRCUT),
        bf.Next(),
        bf.ChooseSpecialist(bf.ANY_SPECIALIST),
        bf.Next(),
        bf.ChooseDate(DAY, union, master_slots=(first, second)),
    ]
    flow = bf.apply_all(bf.BookingFlow(), events)

    rejected = bf.apply(flow, bf.SelectStartTime("14:00"))
    assert rejected.selected_times == ()
    assert rejected.slot_error == "Потрібно 2 слотів підряд (60 хв). Оберіть інший час."

    accepted = bf.apply(flow, bf.SelectStartTime("14:30"))
    assert accepted.selected_times == ("14:30", "15:00")
    assert bf.apply(accepted, bf.Next()).step is bf.FlowStep.CONFIRMING_DETAILS

    # A new specialist drops the per-master lists along with the date
    reset = bf.apply_all(accepted, [bf.Back(), bf.ChooseSpecialist(7)])
    assert reset.master_slots == ()
