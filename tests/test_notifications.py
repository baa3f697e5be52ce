import logging
from types import SimpleNamespace

import pytest

from models.booking import BookingEvent, BookingStatus
from services.notifications import render_messages
from utils.notifier import EMAIL, SMS, OutboundMessage


def drain(app):
    assert app.extensions["notifier"].flush(timeout=5)


def test_create_sends_email_and_sms(app, book, sent):
    data = book()
    drain(app)

    by_channel = {m.channel: m for m in sent}
    assert set(by_channel) == {EMAIL, SMS}
    email = by_channel[EMAIL]
    assert email.to == "alice@example.com"
    assert email.subject == f"Booking Received - {data['bookingNumber']}"
    assert "Dear Alice Driver" in email.body
    assert "Toyota Corolla (ABC123)" in email.body
    assert by_channel[SMS].to == "+15550001"


def test_transitions_notify_customer(app, clients, book, sent):
    data = book()
    for step in ("confirm", "start"):
        clients.employee.post(f"/admin/bookings/{data['id']}/{step}")
    drain(app)

    # workers may finish in any order
    subjects = {m.subject for m in sent if m.channel == EMAIL}
    assert subjects == {
        f"Booking Received - {data['bookingNumber']}",
        f"Booking Confirmation - {data['bookingNumber']}",
        f"Booking Status Update - {data['bookingNumber']}",
    }
    status_mail = next(m for m in sent if (m.subject or "").startswith("Booking Status Update"))
    assert "Previous Status: Confirmed" in status_mail.body
    assert "New Status: InProgress" in status_mail.body


def test_failed_delivery_never_fails_the_request(app, world, clients, book, monkeypatch, caplog):
    def _boom(message):
        raise RuntimeError("smtp down")

    monkeypatch.setattr("utils.notifier._transport", _boom)
    caplog.set_level(logging.ERROR, logger="utils.notifier")

    data = book()
    assert data["status"] == "Pending"
    drain(app)

    resp = clients.alice.post(f"/bookings/{data['id']}/cancel", json={"reason": "Change of plans"})
    assert resp.status_code == 200
    drain(app)
    assert any("message dropped" in r.getMessage() for r in caplog.records)


def test_rendering_failure_is_swallowed(app, book, monkeypatch):
    def _broken(*args, **kwargs):
        raise ValueError("template broke")

    monkeypatch.setattr("services.booking_service.render_messages", _broken)
    assert book()["status"] == "Pending"


def test_disabled_notifier_drops_messages(app, book, sent):
    app.extensions["notifier"].enabled = False
    book()
    drain(app)
    assert sent == []


def test_unconfigured_transports_report_not_sent(app):
    from utils.emailer import send_email
    from utils.sms import send_sms

    assert send_email("a@example.com", "s", "b") == (False, "Email not configured")
    assert send_sms("+15550001", "b") == (False, "SMS not configured")


@pytest.fixture
def recipient():
    return SimpleNamespace(full_name="Bob Rider", email="bob@example.com", phone_number=None)


def test_cancel_message_carries_reason(recipient):
    event = BookingEvent(
        kind="cancelled", booking_number="BK20250601100000ABCDEF", actor_id=1,
        old_status=BookingStatus.PENDING, new_status=BookingStatus.CANCELLED,
        reason="customer no-show",
    )
    messages = render_messages(event, recipient, "details")
    # no phone number, so email only
    assert [m.channel for m in messages] == [EMAIL]
    assert "Reason: customer no-show" in messages[0].body
    assert messages[0].subject == "Booking Cancelled - BK20250601100000ABCDEF"


def test_completed_has_no_sms():
    event = BookingEvent(
        kind="completed", booking_number="BK1", actor_id=1,
        old_status=BookingStatus.IN_PROGRESS, new_status=BookingStatus.COMPLETED,
    )
    person = SimpleNamespace(full_name="A", email="a@example.com", phone_number="+1555")
    messages = render_messages(event, person, "details")
    assert [m.channel for m in messages] == [EMAIL]


def test_unknown_kind_renders_nothing(recipient):
    event = BookingEvent(kind="archived", booking_number="BK1", actor_id=1)
    assert render_messages(event, recipient, "details") == []


def test_outbound_message_is_immutable():
    message = OutboundMessage(channel=SMS, to="+1", body="hi")
    with pytest.raises(AttributeError):
        message.body = "changed"
