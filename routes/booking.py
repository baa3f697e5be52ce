from flask import Blueprint, g, request

from security.rbac import is_staff
from services import booking_queries, booking_service
from services.booking_queries import BookingFilters
from utils.auth_context import current_customer, login_required
from utils.errors import ValidationFailed
from utils.pagination import PaginationParams
from utils.parsing import iso_date, json_body, optional_text, positive_int, time_of_day
from utils.responses import ok, paginated

booking_bp = Blueprint("booking", __name__)


# ---------- CUSTOMER: create ----------
@booking_bp.post("/bookings")
@login_required
def create_booking():
    customer = current_customer()
    data = json_body()

    errors = []
    vehicle_id = positive_int(data, "vehicleId", errors)
    center_id = positive_int(data, "serviceCenterId", errors)
    service_id = positive_int(data, "serviceId", errors)
    booking_date = iso_date(data, "bookingDate", errors)
    booking_time = time_of_day(data, "bookingTime", errors)
    notes = optional_text(data, "customerNotes", errors)
    if errors:
        raise ValidationFailed(errors)

    booking = booking_service.create_booking(
        g.user,
        customer,
        vehicle_id=vehicle_id,
        service_center_id=center_id,
        service_id=service_id,
        booking_date=booking_date,
        booking_time=booking_time,
        customer_notes=notes,
    )
    return ok(booking_queries.get_booking_detail(booking.id), 201)


# ---------- CUSTOMER: my bookings ----------
@booking_bp.get("/bookings")
@login_required
def my_bookings():
    customer = current_customer()
    filters = BookingFilters.from_args(request.args)
    params = PaginationParams.from_args(request.args)
    items, page = booking_queries.list_bookings(filters, params, customer_id=customer.id)
    return paginated(items, page)


@booking_bp.get("/bookings/<int:booking_id>")
@login_required
def get_booking(booking_id):
    booking_service.ensure_can_view(g.user, booking_id)
    return ok(booking_queries.get_booking_detail(booking_id, include_history=is_staff()))


# ---------- CUSTOMER or STAFF: cancel ----------
@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id):
    data = json_body()
    reason = data.get("reason")
    if reason is not None and not isinstance(reason, str):
        raise ValidationFailed(["reason must be a string"])

    booking_service.cancel_booking(g.user, booking_id, reason)
    return ok(booking_queries.get_booking_detail(booking_id))


@booking_bp.patch("/bookings/<int:booking_id>/notes")
@login_required
def update_notes(booking_id):
    customer = current_customer()
    errors = []
    notes = optional_text(json_body(), "notes", errors)
    if errors:
        raise ValidationFailed(errors)

    booking_service.update_customer_notes(g.user, customer, booking_id, notes)
    return ok(booking_queries.get_booking_detail(booking_id))
