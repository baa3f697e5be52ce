"""
Write side of the booking engine.

Every command runs inside the request's session: validate, mutate the Booking
through its own methods, commit, then drain the queued events to the
notifier. Audit rows are written after the commit or rollback because
`log_event` commits on its own; once the operation has committed, a failed
audit write is logged and the caller still gets the result.
"""

import logging
from datetime import date, time
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import REASON_MAX_LENGTH, ACTIVE_STATUSES, Booking
from models.customer import Customer
from models.service import Service
from models.service_center import ServiceCenter
from models.service_center_service import ServiceCenterService
from models.user import User
from models.vehicle import Vehicle
from security.rbac import user_is_staff
from services.notifications import render_messages
from utils.audit import log_event
from utils.errors import (
    BusinessRuleViolation,
    Duplicate,
    Forbidden,
    InvalidTransition,
    NotFound,
    SlotConflict,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

REASON_MIN_LENGTH = 5

# how the active-slot index shows up in IntegrityError text (postgres, sqlite)
_SLOT_INDEX_MARKERS = ("uq_bookings_active_slot", "bookings.service_center_id")
_NUMBER_MARKERS = ("bookings_booking_number_key", "bookings.booking_number")
NUMBER_ATTEMPTS = 2


def slot_is_taken(service_center_id: int, booking_date: date, booking_time: time) -> bool:
    return db.session.query(
        Booking.query.filter(
            Booking.service_center_id == service_center_id,
            Booking.booking_date == booking_date,
            Booking.booking_time == booking_time,
            Booking.status.in_(ACTIVE_STATUSES),
        ).exists()
    ).scalar()


def _is_slot_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig)
    return any(marker in text for marker in _SLOT_INDEX_MARKERS)


def _is_number_collision(exc: IntegrityError) -> bool:
    text = str(exc.orig)
    return any(marker in text for marker in _NUMBER_MARKERS)


def _audit_after_commit(action: str, **kwargs) -> None:
    """The operation is already committed; a failed audit write is logged, not raised."""
    try:
        log_event(action, **kwargs)
    except Exception:
        db.session.rollback()
        logger.exception("Audit write %s failed for %s #%s", action, kwargs.get("entity"), kwargs.get("entity_id"))


# ---------- creation ----------

def create_booking(
    actor: User,
    customer: Customer,
    *,
    vehicle_id: int,
    service_center_id: int,
    service_id: int,
    booking_date: date,
    booking_time: time,
    customer_notes: Optional[str] = None,
) -> Booking:
    # 1) vehicle ownership
    vehicle = db.session.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise NotFound("Vehicle", vehicle_id)
    if vehicle.customer_id != customer.id:
        log_event("BOOKING_CREATE_DENIED", user_id=actor.id, entity="vehicle", entity_id=vehicle_id)
        raise Forbidden("You can only book services for your own vehicles")

    # 2) service center
    center = db.session.get(ServiceCenter, service_center_id)
    if center is None:
        raise NotFound("Service center", service_center_id)
    if not center.is_active:
        raise BusinessRuleViolation("This service center is currently not accepting bookings")

    # 3) service offered and available at that center
    service = db.session.get(Service, service_id)
    if service is None:
        raise NotFound("Service", service_id)
    link = ServiceCenterService.query.filter_by(
        service_center_id=service_center_id, service_id=service_id
    ).first()
    if link is None:
        raise BusinessRuleViolation("This service is not offered at the selected service center")
    if not link.is_available:
        raise BusinessRuleViolation("This service is currently unavailable at the selected service center")
    if not service.is_active:
        raise BusinessRuleViolation("This service is currently not available")

    # 4) application-level slot check; the partial unique index is authoritative
    if slot_is_taken(service_center_id, booking_date, booking_time):
        _record_slot_conflict(actor, service_center_id, booking_date, booking_time, "check")
        raise SlotConflict()

    # 5) schedule rules run inside the factory; a clashing booking number gets one fresh draw
    for attempt in range(1, NUMBER_ATTEMPTS + 1):
        booking = Booking.create(
            customer_id=customer.id,
            vehicle_id=vehicle_id,
            service_center_id=service_center_id,
            service_id=service_id,
            booking_date=booking_date,
            booking_time=booking_time,
            created_by=actor.id,
            customer_notes=customer_notes,
        )
        db.session.add(booking)
        try:
            db.session.commit()
            break
        except IntegrityError as exc:
            db.session.rollback()
            if _is_slot_violation(exc):
                _record_slot_conflict(actor, service_center_id, booking_date, booking_time, "constraint")
                raise SlotConflict() from exc
            if not _is_number_collision(exc):
                raise
            logger.warning("Booking number %s already taken (attempt %d)", booking.booking_number, attempt)
            if attempt == NUMBER_ATTEMPTS:
                raise Duplicate("Could not allocate a booking number. Please try again.") from exc

    logger.info(
        "Booking %s created by user %s (center=%s date=%s time=%s)",
        booking.booking_number, actor.id, service_center_id, booking_date, booking_time,
    )
    events = booking.pull_events()
    _audit_after_commit("BOOKING_CREATE", user_id=actor.id, entity="booking", entity_id=booking.id,
                        metadata={"booking_number": booking.booking_number})
    dispatch_events(booking, events)
    return booking


def _record_slot_conflict(actor, service_center_id, booking_date, booking_time, detected_by):
    logger.warning(
        "Slot conflict for center=%s date=%s time=%s (detected by %s)",
        service_center_id, booking_date, booking_time, detected_by,
    )
    log_event(
        "BOOKING_SLOT_CONFLICT",
        user_id=actor.id,
        entity="service_center",
        entity_id=service_center_id,
        metadata={"date": booking_date, "time": booking_time, "detected_by": detected_by},
    )


# ---------- transitions ----------

def _load(booking_id: int) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking", booking_id)
    return booking


def _require_staff(actor: User, booking_id: int, operation: str) -> None:
    if not user_is_staff(actor):
        log_event("BOOKING_TRANSITION_DENIED", user_id=actor.id, entity="booking", entity_id=booking_id,
                  metadata={"operation": operation})
        raise Forbidden()


def _transition(actor: User, booking_id: int, operation: str, action: str, apply) -> Booking:
    booking = _load(booking_id)
    old = booking.current_status
    try:
        apply(booking)
    except InvalidTransition as exc:
        db.session.rollback()
        log_event("BOOKING_TRANSITION_REJECTED", user_id=actor.id, entity="booking", entity_id=booking_id,
                  metadata={"operation": operation, "status": exc.current})
        raise

    db.session.commit()
    logger.info(
        "Booking %s %s -> %s by user %s",
        booking.booking_number, old.value, booking.current_status.value, actor.id,
    )
    events = booking.pull_events()
    _audit_after_commit(action, user_id=actor.id, entity="booking", entity_id=booking_id,
                        metadata={"from": old.value, "to": booking.current_status.value})
    dispatch_events(booking, events)
    return booking


def confirm_booking(actor: User, booking_id: int, notes: Optional[str] = None) -> Booking:
    _require_staff(actor, booking_id, "confirm")
    return _transition(actor, booking_id, "confirm", "BOOKING_CONFIRM",
                       lambda b: b.confirm(actor.id, notes))


def start_booking(actor: User, booking_id: int, notes: Optional[str] = None) -> Booking:
    _require_staff(actor, booking_id, "start")
    return _transition(actor, booking_id, "start", "BOOKING_START",
                       lambda b: b.start_progress(actor.id, notes))


def complete_booking(actor: User, booking_id: int, notes: Optional[str] = None) -> Booking:
    _require_staff(actor, booking_id, "complete")
    return _transition(actor, booking_id, "complete", "BOOKING_COMPLETE",
                       lambda b: b.complete(actor.id, notes))


def validate_cancellation_reason(reason) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailed(["Cancellation reason is required"])
    if len(reason) < REASON_MIN_LENGTH:
        raise ValidationFailed([f"Cancellation reason must be at least {REASON_MIN_LENGTH} characters"])
    if len(reason) > REASON_MAX_LENGTH:
        raise ValidationFailed([f"Cancellation reason must not exceed {REASON_MAX_LENGTH} characters"])
    return reason


def cancel_booking(actor: User, booking_id: int, reason: str) -> Booking:
    """
    Owners may cancel while Pending or Confirmed; staff may cancel anything that
    is still active. A staff member who also owns the booking gets staff rules.
    """
    reason = validate_cancellation_reason(reason)
    booking = _load(booking_id)

    if not user_is_staff(actor):
        customer = Customer.query.filter_by(user_id=actor.id).first()
        if customer is None or booking.customer_id != customer.id:
            log_event("BOOKING_CANCEL_DENIED", user_id=actor.id, entity="booking", entity_id=booking_id)
            raise Forbidden("You don't have permission to cancel this booking")
        if not booking.can_be_cancelled_by_customer():
            log_event("BOOKING_TRANSITION_REJECTED", user_id=actor.id, entity="booking", entity_id=booking_id,
                      metadata={"operation": "cancel", "status": booking.current_status.value})
            raise BusinessRuleViolation(
                "This booking cannot be cancelled. It is either already in progress, completed, or cancelled."
            )

    return _transition(actor, booking_id, "cancel", "BOOKING_CANCEL",
                       lambda b: b.cancel(actor.id, reason))


# ---------- notes ----------

def update_customer_notes(actor: User, customer: Customer, booking_id: int, notes: Optional[str]) -> Booking:
    booking = _load(booking_id)
    if booking.customer_id != customer.id:
        raise Forbidden("You can only update notes on your own bookings")
    booking.update_customer_notes(actor.id, notes)
    db.session.commit()
    _audit_after_commit("BOOKING_NOTES_UPDATE", user_id=actor.id, entity="booking", entity_id=booking_id,
                        metadata={"field": "customer_notes"})
    return booking


def update_staff_notes(actor: User, booking_id: int, notes: Optional[str]) -> Booking:
    _require_staff(actor, booking_id, "notes")
    booking = _load(booking_id)
    booking.update_staff_notes(actor.id, notes)
    db.session.commit()
    _audit_after_commit("BOOKING_NOTES_UPDATE", user_id=actor.id, entity="booking", entity_id=booking_id,
                        metadata={"field": "staff_notes"})
    return booking


# ---------- access ----------

def ensure_can_view(actor: User, booking_id: int) -> None:
    """Owners and staff may read a booking; anyone else gets 403."""
    booking = _load(booking_id)
    if user_is_staff(actor):
        return
    customer = Customer.query.filter_by(user_id=actor.id).first()
    if customer is None or booking.customer_id != customer.id:
        raise Forbidden("You don't have permission to view this booking")


# ---------- notification hand-off ----------

def _summary(booking: Booking) -> str:
    vehicle = db.session.get(Vehicle, booking.vehicle_id)
    center = db.session.get(ServiceCenter, booking.service_center_id)
    service = db.session.get(Service, booking.service_id)
    return (
        "Booking Details:\n"
        f"- Booking Number: {booking.booking_number}\n"
        f"- Service: {service.name}\n"
        f"- Service Center: {center.name}\n"
        f"- Vehicle: {vehicle.brand} {vehicle.model} ({vehicle.plate_number})\n"
        f"- Date: {booking.booking_date:%Y-%m-%d}\n"
        f"- Time: {booking.booking_time:%H:%M}"
    )


def dispatch_events(booking: Booking, events) -> None:
    """Render drained events and queue them. Never raises into the caller."""
    if not events:
        return
    try:
        customer = db.session.get(Customer, booking.customer_id)
        recipient = db.session.get(User, customer.user_id) if customer else None
        details = _summary(booking)
        messages = [m for event in events for m in render_messages(event, recipient, details)]
        notifier = current_app.extensions.get("notifier")
        if notifier is None:
            logger.debug("No notifier registered; %d message(s) dropped", len(messages))
            return
        notifier.enqueue(messages)
    except Exception:
        logger.exception("Could not queue notifications for booking %s", booking.booking_number)
