import enum
import secrets
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import validates

from models.db import db
from models.booking_status_history import BookingStatusHistory
from utils.clock import add_months, today, utcnow
from utils.errors import BusinessRuleViolation, InvalidTransition, ValidationFailed

MAX_MONTHS_AHEAD = 3
SLOT_MINUTES = 30
NOTES_MAX_LENGTH = 1000
REASON_MAX_LENGTH = 500


class BookingStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @classmethod
    def parse(cls, value: str) -> "BookingStatus":
        # wire values are matched case-insensitively ("inprogress" == "InProgress")
        wanted = (value or "").strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        allowed = ", ".join(m.value for m in cls)
        raise ValidationFailed([f"Invalid status '{value}'. Allowed values: {allowed}"])


ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)
TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)

# operation -> (statuses it is legal from, resulting status)
TRANSITIONS = {
    "confirm": ({BookingStatus.PENDING}, BookingStatus.CONFIRMED),
    "start": ({BookingStatus.CONFIRMED}, BookingStatus.IN_PROGRESS),
    "complete": ({BookingStatus.IN_PROGRESS}, BookingStatus.COMPLETED),
    "cancel": (set(ACTIVE_STATUSES), BookingStatus.CANCELLED),
}

_PAST_TENSE = {"confirm": "confirmed", "start": "started", "complete": "completed"}

_HISTORY_NOTES = {
    "confirm": "Booking confirmed by staff",
    "start": "Service work started",
    "complete": "Service completed successfully",
}

_ACTIVE_SQL = ", ".join(f"'{s.value}'" for s in ACTIVE_STATUSES)
_ALL_SQL = ", ".join(f"'{s.value}'" for s in BookingStatus)


def allowed_operations(status: BookingStatus) -> list:
    return [op for op, (legal_from, _) in TRANSITIONS.items() if status in legal_from]


def validate_schedule(booking_date: date, booking_time: time) -> None:
    errors = []
    first_day = today()
    if booking_date < first_day:
        errors.append("Booking date cannot be in the past")
    elif booking_date > add_months(first_day, MAX_MONTHS_AHEAD):
        errors.append(f"Booking date cannot be more than {MAX_MONTHS_AHEAD} months in the future")

    if booking_time.minute % SLOT_MINUTES or booking_time.second or booking_time.microsecond:
        errors.append(f"Booking time must be on {SLOT_MINUTES}-minute intervals (e.g., 09:00, 09:30)")

    if errors:
        raise ValidationFailed(errors)


def _clean_notes(notes: Optional[str], label: str) -> Optional[str]:
    if notes is None:
        return None
    notes = notes.strip()
    if len(notes) > NOTES_MAX_LENGTH:
        raise ValidationFailed([f"{label} must not exceed {NOTES_MAX_LENGTH} characters"])
    return notes or None


def generate_booking_number() -> str:
    # BK + UTC timestamp + 6 random hex chars, e.g. BK20250315143045A1B2C3
    return f"BK{utcnow():%Y%m%d%H%M%S}{secrets.token_hex(3).upper()}"


@dataclass(frozen=True)
class BookingEvent:
    """Something that happened to a booking, drained after commit and handed to the notifier."""
    kind: str  # created, confirmed, status_changed, completed, cancelled
    booking_number: str
    actor_id: int
    old_status: Optional[BookingStatus] = None
    new_status: Optional[BookingStatus] = None
    reason: Optional[str] = None
    occurred_at: Optional[datetime] = None
    booking_id: Optional[int] = None


class Booking(db.Model):
    """
    Aggregate root of the booking engine.

    Only `create()`, the four transition methods and the notes updates change a
    booking; participants and schedule are fixed once created. Related
    catalog/customer rows are referenced by id and resolved by the query layer.
    """
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)
    booking_number = db.Column(db.String(50), unique=True, nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False, index=True)
    service_center_id = db.Column(db.Integer, db.ForeignKey("service_centers.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)

    booking_date = db.Column(db.Date, nullable=False, index=True)
    booking_time = db.Column(db.Time, nullable=False)

    status = db.Column(
        db.Enum(
            BookingStatus,
            native_enum=False,
            length=20,
            values_callable=lambda enum_cls: [m.value for m in enum_cls],
            validate_strings=True,
        ),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    customer_notes = db.Column(db.String(NOTES_MAX_LENGTH), nullable=True)
    staff_notes = db.Column(db.String(NOTES_MAX_LENGTH), nullable=True)

    confirmed_at = db.Column(db.DateTime, nullable=True)
    confirmed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.String(REASON_MAX_LENGTH), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)

    status_history = db.relationship(
        "BookingStatusHistory",
        order_by="BookingStatusHistory.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        # Slot guard: one active booking per (center, date, time). Terminal rows
        # drop out of the index, which releases the slot.
        db.Index(
            "uq_bookings_active_slot",
            "service_center_id",
            "booking_date",
            "booking_time",
            unique=True,
            sqlite_where=text(f"status IN ({_ACTIVE_SQL})"),
            postgresql_where=text(f"status IN ({_ACTIVE_SQL})"),
        ),
        db.CheckConstraint(f"status IN ({_ALL_SQL})", name="ck_bookings_status"),
        db.CheckConstraint(
            "(status = 'Cancelled' AND cancellation_reason IS NOT NULL)"
            " OR (status != 'Cancelled' AND cancellation_reason IS NULL)",
            name="ck_bookings_cancellation_reason",
        ),
    )

    @validates("status")
    def _validate_status(self, key, value):
        if isinstance(value, BookingStatus):
            return value
        return BookingStatus.parse(value)

    # ---------- factory ----------
    @classmethod
    def create(
        cls,
        *,
        customer_id: int,
        vehicle_id: int,
        service_center_id: int,
        service_id: int,
        booking_date: date,
        booking_time: time,
        created_by: int,
        customer_notes: Optional[str] = None,
    ) -> "Booking":
        ids = {
            "Customer ID": customer_id,
            "Vehicle ID": vehicle_id,
            "Service center ID": service_center_id,
            "Service ID": service_id,
        }
        bad = [f"{label} must be positive" for label, value in ids.items() if not value or value <= 0]
        if bad:
            raise ValidationFailed(bad)

        validate_schedule(booking_date, booking_time)

        now = utcnow()
        booking = cls(
            booking_number=generate_booking_number(),
            customer_id=customer_id,
            vehicle_id=vehicle_id,
            service_center_id=service_center_id,
            service_id=service_id,
            booking_date=booking_date,
            booking_time=booking_time,
            status=BookingStatus.PENDING,
            customer_notes=_clean_notes(customer_notes, "Customer notes"),
            created_at=now,
            created_by=created_by,
        )
        booking._record_history(None, created_by, "Booking created", now)
        booking._queue_event(BookingEvent(
            kind="created",
            booking_number=booking.booking_number,
            actor_id=created_by,
            new_status=BookingStatus.PENDING,
            occurred_at=now,
        ))
        return booking

    # ---------- transitions ----------
    def confirm(self, actor_id: int, notes: Optional[str] = None) -> None:
        old = self._guard("confirm")
        now = utcnow()
        notes = self._apply_staff_notes(notes)
        self.status = BookingStatus.CONFIRMED
        self.confirmed_at = now
        self.confirmed_by = actor_id
        self._finish_transition(old, actor_id, now, _with_notes(_HISTORY_NOTES["confirm"], notes))
        self._queue_event(BookingEvent(
            kind="confirmed", booking_number=self.booking_number, actor_id=actor_id,
            old_status=old, new_status=self.status, occurred_at=now,
        ))

    def start_progress(self, actor_id: int, notes: Optional[str] = None) -> None:
        old = self._guard("start")
        now = utcnow()
        notes = self._apply_staff_notes(notes)
        self.status = BookingStatus.IN_PROGRESS
        self._finish_transition(old, actor_id, now, _with_notes(_HISTORY_NOTES["start"], notes))
        self._queue_event(BookingEvent(
            kind="status_changed", booking_number=self.booking_number, actor_id=actor_id,
            old_status=old, new_status=self.status, occurred_at=now,
        ))

    def complete(self, actor_id: int, notes: Optional[str] = None) -> None:
        old = self._guard("complete")
        now = utcnow()
        notes = self._apply_staff_notes(notes)
        self.status = BookingStatus.COMPLETED
        self.completed_at = now
        self._finish_transition(old, actor_id, now, _with_notes(_HISTORY_NOTES["complete"], notes))
        self._queue_event(BookingEvent(
            kind="completed", booking_number=self.booking_number, actor_id=actor_id,
            old_status=old, new_status=self.status, occurred_at=now,
        ))

    def cancel(self, actor_id: int, reason: str) -> None:
        old = self._guard("cancel")
        reason = (reason or "").strip()
        if not reason:
            raise BusinessRuleViolation("Cancellation reason is required")
        if len(reason) > REASON_MAX_LENGTH:
            raise ValidationFailed([f"Cancellation reason must not exceed {REASON_MAX_LENGTH} characters"])

        now = utcnow()
        self.status = BookingStatus.CANCELLED
        self.cancelled_at = now
        self.cancellation_reason = reason
        self._finish_transition(old, actor_id, now, f"Cancelled: {reason}")
        self._queue_event(BookingEvent(
            kind="cancelled", booking_number=self.booking_number, actor_id=actor_id,
            old_status=old, new_status=self.status, reason=reason, occurred_at=now,
        ))

    # ---------- narrative updates ----------
    def update_customer_notes(self, actor_id: int, notes: Optional[str]) -> None:
        self._ensure_modifiable()
        self.customer_notes = _clean_notes(notes, "Customer notes")
        self._touch(actor_id, utcnow())

    def update_staff_notes(self, actor_id: int, notes: Optional[str]) -> None:
        self._ensure_modifiable()
        self.staff_notes = _clean_notes(notes, "Staff notes")
        self._touch(actor_id, utcnow())

    # ---------- queries ----------
    @property
    def current_status(self) -> BookingStatus:
        return self.status if isinstance(self.status, BookingStatus) else BookingStatus.parse(self.status)

    def can_be_modified(self) -> bool:
        return self.current_status not in TERMINAL_STATUSES

    def can_be_cancelled_by_customer(self) -> bool:
        # InProgress work can only be cancelled by staff
        return self.current_status in (BookingStatus.PENDING, BookingStatus.CONFIRMED)

    @property
    def scheduled_at(self) -> datetime:
        return datetime.combine(self.booking_date, self.booking_time)

    def is_overdue(self) -> bool:
        return self.can_be_modified() and utcnow() > self.scheduled_at

    def pull_events(self) -> list:
        """Return and clear the events queued since the last drain."""
        queued = getattr(self, "_queued_events", None) or []
        self._queued_events = []
        return [replace(event, booking_id=self.id) for event in queued]

    # ---------- internals ----------
    def _guard(self, operation: str) -> BookingStatus:
        current = self.current_status
        legal_from, _ = TRANSITIONS[operation]
        if current in legal_from:
            return current

        if operation == "cancel":
            if current == BookingStatus.COMPLETED:
                raise InvalidTransition(current.value, operation, "Cannot cancel a completed booking.")
            raise InvalidTransition(current.value, operation, "Booking is already cancelled.")

        allowed = " or ".join(s.value for s in legal_from)
        raise InvalidTransition(
            current.value,
            operation,
            f"Cannot {operation} booking in {current.value} status. Only {allowed} bookings can be {_PAST_TENSE[operation]}.",
        )

    def _ensure_modifiable(self) -> None:
        if not self.can_be_modified():
            raise BusinessRuleViolation("Cannot update notes for completed or cancelled bookings.")

    def _apply_staff_notes(self, notes: Optional[str]) -> Optional[str]:
        notes = _clean_notes(notes, "Staff notes")
        if notes:
            self.staff_notes = notes
        return notes

    def _finish_transition(self, old: BookingStatus, actor_id: int, now: datetime, note: str) -> None:
        self._touch(actor_id, now)
        self._record_history(old, actor_id, note, now)

    def _touch(self, actor_id: int, now: datetime) -> None:
        self.updated_at = now
        self.updated_by = actor_id

    def _record_history(self, old: Optional[BookingStatus], actor_id: int, note: str, now: datetime) -> None:
        self.status_history.append(BookingStatusHistory(
            old_status=old.value if old else None,
            new_status=self.current_status.value,
            changed_by=actor_id,
            changed_at=now,
            notes=note,
        ))

    def _queue_event(self, event: BookingEvent) -> None:
        queued = getattr(self, "_queued_events", None)
        if queued is None:
            queued = self._queued_events = []
        queued.append(event)


def _with_notes(base: str, notes: Optional[str]) -> str:
    return f"{base} - {notes}" if notes else base
