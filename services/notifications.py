"""Turns drained booking events into customer-facing messages."""

from typing import List, Optional

from models.booking import BookingEvent, BookingStatus
from utils.notifier import EMAIL, SMS, OutboundMessage

SIGNATURE = "Best regards,\nAutoCare Team"

# SMS goes out only for the events a customer needs to act on
SMS_KINDS = {"created", "confirmed", "cancelled"}


def _status_label(status: Optional[BookingStatus]) -> str:
    return status.value if status is not None else "-"


def _created(event, recipient, details):
    subject = f"Booking Received - {event.booking_number}"
    body = (
        f"Dear {recipient.full_name},\n\n"
        "We have received your booking. You will be notified once it is confirmed.\n\n"
        f"{details}\n\n{SIGNATURE}\n"
    )
    sms = f"AutoCare: booking {event.booking_number} received and pending confirmation."
    return subject, body, sms


def _confirmed(event, recipient, details):
    subject = f"Booking Confirmation - {event.booking_number}"
    body = (
        f"Dear {recipient.full_name},\n\n"
        "Your booking has been confirmed!\n\n"
        f"{details}\n\nThank you for choosing our service!\n\n{SIGNATURE}\n"
    )
    sms = f"AutoCare: booking {event.booking_number} is confirmed."
    return subject, body, sms


def _cancelled(event, recipient, details):
    subject = f"Booking Cancelled - {event.booking_number}"
    body = (
        f"Dear {recipient.full_name},\n\n"
        "Your booking has been cancelled.\n\n"
        f"Booking Number: {event.booking_number}\n"
        f"Reason: {event.reason}\n\n"
        f"If you have any questions, please contact us.\n\n{SIGNATURE}\n"
    )
    sms = f"AutoCare: booking {event.booking_number} was cancelled. Reason: {event.reason}"
    return subject, body, sms


def _status_changed(event, recipient, details):
    subject = f"Booking Status Update - {event.booking_number}"
    body = (
        f"Dear {recipient.full_name},\n\n"
        "Your booking status has been updated.\n\n"
        f"Booking Number: {event.booking_number}\n"
        f"Previous Status: {_status_label(event.old_status)}\n"
        f"New Status: {_status_label(event.new_status)}\n\n{SIGNATURE}\n"
    )
    return subject, body, None


_RENDERERS = {
    "created": _created,
    "confirmed": _confirmed,
    "cancelled": _cancelled,
    "status_changed": _status_changed,
    "completed": _status_changed,
}


def render_messages(event: BookingEvent, recipient, details: str) -> List[OutboundMessage]:
    """
    `recipient` is the customer's User row; `details` is the booking summary
    block used in the longer mails. Recipients are resolved by the caller so no
    database access happens on the delivery thread.
    """
    renderer = _RENDERERS.get(event.kind)
    if renderer is None or recipient is None:
        return []

    subject, body, sms_body = renderer(event, recipient, details)
    messages = []
    if recipient.email:
        messages.append(OutboundMessage(
            channel=EMAIL, to=recipient.email, subject=subject, body=body,
            kind=event.kind, booking_number=event.booking_number,
        ))
    if sms_body and event.kind in SMS_KINDS and recipient.phone_number:
        messages.append(OutboundMessage(
            channel=SMS, to=recipient.phone_number, body=sms_body,
            kind=event.kind, booking_number=event.booking_number,
        ))
    return messages
