from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import (
    Booking,
    BookingStatus,
    allowed_operations,
    generate_booking_number,
)
from utils.clock import add_months, today
from utils.errors import BusinessRuleViolation, InvalidTransition, ValidationFailed

ACTOR = 7


def new_booking(day=None, at=time(9, 0), notes=None):
    return Booking.create(
        customer_id=1,
        vehicle_id=2,
        service_center_id=3,
        service_id=4,
        booking_date=day or today() + timedelta(days=1),
        booking_time=at,
        created_by=ACTOR,
        customer_notes=notes,
    )


def booking_in(status):
    booking = new_booking()
    steps = {
        BookingStatus.PENDING: [],
        BookingStatus.CONFIRMED: ["confirm"],
        BookingStatus.IN_PROGRESS: ["confirm", "start"],
        BookingStatus.COMPLETED: ["confirm", "start", "complete"],
        BookingStatus.CANCELLED: ["cancel"],
    }[status]
    for step in steps:
        apply(booking, step)
    return booking


def apply(booking, operation):
    if operation == "confirm":
        booking.confirm(ACTOR)
    elif operation == "start":
        booking.start_progress(ACTOR)
    elif operation == "complete":
        booking.complete(ACTOR)
    else:
        booking.cancel(ACTOR, "customer no-show")


LEGAL = {
    BookingStatus.PENDING: {"confirm", "cancel"},
    BookingStatus.CONFIRMED: {"start", "cancel"},
    BookingStatus.IN_PROGRESS: {"complete", "cancel"},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


def test_create_starts_pending_with_one_history_entry():
    booking = new_booking(notes="  rattling noise  ")
    assert booking.current_status == BookingStatus.PENDING
    assert booking.customer_notes == "rattling noise"
    assert booking.cancellation_reason is None
    assert len(booking.status_history) == 1
    entry = booking.status_history[0]
    assert entry.old_status is None
    assert entry.new_status == "Pending"
    assert entry.changed_by == ACTOR
    assert entry.description == "Booking created with status 'Pending'"


def test_booking_number_format():
    number = generate_booking_number()
    assert number.startswith("BK")
    assert len(number) == 22
    assert number[2:16].isdigit()


@pytest.mark.parametrize("status", list(BookingStatus))
@pytest.mark.parametrize("operation", ["confirm", "start", "complete", "cancel"])
def test_transition_closure(status, operation):
    booking = booking_in(status)
    history_before = len(booking.status_history)

    if operation in LEGAL[status]:
        apply(booking, operation)
        assert len(booking.status_history) == history_before + 1
        entry = booking.status_history[-1]
        assert entry.old_status == status.value
        assert entry.new_status == booking.current_status.value
    else:
        with pytest.raises(BusinessRuleViolation):
            apply(booking, operation)
        assert booking.current_status == status
        assert len(booking.status_history) == history_before


@pytest.mark.parametrize("status", list(BookingStatus))
def test_allowed_operations_match_graph(status):
    assert set(allowed_operations(status)) == LEGAL[status]


def test_confirm_sets_metadata_and_staff_notes():
    booking = new_booking()
    booking.confirm(ACTOR, notes="Bay 3")
    assert booking.current_status == BookingStatus.CONFIRMED
    assert booking.confirmed_by == ACTOR
    assert isinstance(booking.confirmed_at, datetime)
    assert booking.staff_notes == "Bay 3"
    assert booking.updated_by == ACTOR
    assert booking.status_history[-1].notes == "Booking confirmed by staff - Bay 3"


def test_complete_sets_completed_at():
    booking = booking_in(BookingStatus.IN_PROGRESS)
    booking.complete(ACTOR, notes="Replaced filter")
    assert booking.completed_at is not None
    assert booking.staff_notes == "Replaced filter"
    assert booking.status_history[-1].notes == "Service completed successfully - Replaced filter"


def test_invalid_transition_message():
    booking = booking_in(BookingStatus.CONFIRMED)
    with pytest.raises(InvalidTransition) as exc:
        booking.confirm(ACTOR)
    assert exc.value.message == "Cannot confirm booking in Confirmed status. Only Pending bookings can be confirmed."


def test_cancel_requires_reason_and_stores_it():
    booking = new_booking()
    with pytest.raises(BusinessRuleViolation):
        booking.cancel(ACTOR, "   ")
    assert booking.cancellation_reason is None

    booking.cancel(ACTOR, "customer no-show")
    assert booking.current_status == BookingStatus.CANCELLED
    assert booking.cancellation_reason == "customer no-show"
    assert booking.cancelled_at is not None
    assert booking.status_history[-1].notes == "Cancelled: customer no-show"


def test_cancel_terminal_messages():
    with pytest.raises(InvalidTransition, match="Cannot cancel a completed booking."):
        booking_in(BookingStatus.COMPLETED).cancel(ACTOR, "too late now")
    with pytest.raises(InvalidTransition, match="Booking is already cancelled."):
        booking_in(BookingStatus.CANCELLED).cancel(ACTOR, "twice over")


def test_reason_present_only_when_cancelled():
    for status in BookingStatus:
        booking = booking_in(status)
        assert (booking.cancellation_reason is not None) == (status == BookingStatus.CANCELLED)


def test_customer_cancellable_only_before_work_starts():
    assert booking_in(BookingStatus.PENDING).can_be_cancelled_by_customer()
    assert booking_in(BookingStatus.CONFIRMED).can_be_cancelled_by_customer()
    assert not booking_in(BookingStatus.IN_PROGRESS).can_be_cancelled_by_customer()


def test_schedule_rules():
    with pytest.raises(ValidationFailed, match="past"):
        new_booking(day=today() - timedelta(days=1))
    with pytest.raises(ValidationFailed, match="3 months"):
        new_booking(day=add_months(today(), 3) + timedelta(days=1))
    with pytest.raises(ValidationFailed, match="30-minute"):
        new_booking(at=time(9, 15))
    with pytest.raises(ValidationFailed, match="30-minute"):
        new_booking(at=time(9, 30, 10))

    assert new_booking(day=add_months(today(), 3), at=time(17, 30)).booking_time == time(17, 30)
    assert new_booking(day=today()).booking_date == today()


def test_add_months_clamps_to_month_end():
    assert add_months(date(2025, 11, 30), 3) == date(2026, 2, 28)
    assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
    assert add_months(date(2025, 1, 15), 3) == date(2025, 4, 15)


def test_notes_blocked_once_terminal():
    booking = booking_in(BookingStatus.CONFIRMED)
    booking.update_customer_notes(ACTOR, "bring spare key")
    booking.update_staff_notes(ACTOR, "key received")
    assert booking.customer_notes == "bring spare key"
    assert booking.staff_notes == "key received"

    booking.cancel(ACTOR, "customer no-show")
    with pytest.raises(BusinessRuleViolation, match="Cannot update notes"):
        booking.update_customer_notes(ACTOR, "late")


def test_notes_length_limit():
    with pytest.raises(ValidationFailed):
        new_booking(notes="x" * 1001)


def test_events_are_drained_once():
    booking = new_booking()
    booking.confirm(ACTOR)
    booking.cancel(ACTOR, "customer no-show")

    events = booking.pull_events()
    assert [e.kind for e in events] == ["created", "confirmed", "cancelled"]
    assert events[-1].reason == "customer no-show"
    assert events[-1].old_status == BookingStatus.CONFIRMED
    assert booking.pull_events() == []


def test_is_overdue(monkeypatch):
    booking = new_booking()
    assert not booking.is_overdue()

    later = datetime.combine(booking.booking_date, time(10, 0))
    monkeypatch.setattr("models.booking.utcnow", lambda: later)
    assert booking.is_overdue()

    booking.cancel(ACTOR, "customer no-show")
    assert not booking.is_overdue()


def test_status_parse_is_case_insensitive():
    assert BookingStatus.parse("inprogress") is BookingStatus.IN_PROGRESS
    with pytest.raises(ValidationFailed):
        BookingStatus.parse("Archived")


@pytest.mark.parametrize("assignment", [
    "status = 'Archived'",
    "cancellation_reason = 'customer no-show'",
    "status = 'Cancelled'",
])
def test_storage_rejects_bad_status_and_orphan_reason(book, assignment):
    data = book()
    with pytest.raises(IntegrityError):
        db.session.execute(text(f"UPDATE bookings SET {assignment} WHERE id = :id"), {"id": data["id"]})
        db.session.flush()
    db.session.rollback()

    row = db.session.execute(
        text("SELECT status, cancellation_reason FROM bookings WHERE id = :id"), {"id": data["id"]}
    ).one()
    assert tuple(row) == ("Pending", None)
