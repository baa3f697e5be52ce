from flask import Blueprint, g, request

from security.rbac import require_staff
from services import booking_queries, booking_service
from services.booking_queries import BookingFilters
from utils.errors import ValidationFailed
from utils.pagination import PaginationParams
from utils.parsing import json_body, optional_text
from utils.responses import ok, paginated

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _notes_from_body():
    errors = []
    notes = optional_text(json_body(), "notes", errors)
    if errors:
        raise ValidationFailed(errors)
    return notes


@admin_bp.get("/bookings")
@require_staff
def list_bookings():
    filters = BookingFilters.from_args(request.args)
    params = PaginationParams.from_args(request.args)
    items, page = booking_queries.list_bookings(filters, params)
    return paginated(items, page)


@admin_bp.get("/bookings/<int:booking_id>")
@require_staff
def get_booking(booking_id):
    return ok(booking_queries.get_booking_detail(booking_id, include_history=True))


@admin_bp.get("/bookings/<int:booking_id>/history")
@require_staff
def booking_history(booking_id):
    # 404 for unknown ids rather than an empty list
    booking_service.ensure_can_view(g.user, booking_id)
    return ok(booking_queries.get_status_history(booking_id))


# ---------- STAFF: lifecycle ----------
@admin_bp.post("/bookings/<int:booking_id>/confirm")
@require_staff
def confirm_booking(booking_id):
    booking_service.confirm_booking(g.user, booking_id, _notes_from_body())
    return ok(booking_queries.get_booking_detail(booking_id, include_history=True))


@admin_bp.post("/bookings/<int:booking_id>/start")
@require_staff
def start_booking(booking_id):
    booking_service.start_booking(g.user, booking_id, _notes_from_body())
    return ok(booking_queries.get_booking_detail(booking_id, include_history=True))


@admin_bp.post("/bookings/<int:booking_id>/complete")
@require_staff
def complete_booking(booking_id):
    booking_service.complete_booking(g.user, booking_id, _notes_from_body())
    return ok(booking_queries.get_booking_detail(booking_id, include_history=True))


@admin_bp.patch("/bookings/<int:booking_id>/notes")
@require_staff
def update_staff_notes(booking_id):
    booking_service.update_staff_notes(g.user, booking_id, _notes_from_body())
    return ok(booking_queries.get_booking_detail(booking_id, include_history=True))
