"""
Read side of the booking engine: filtered, sorted and paginated listings plus
the detail projection. Related rows are resolved with joins here; the Booking
model itself only carries foreign-key ids.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import and_, case, func

from models import db
from models.booking import Booking, BookingStatus, allowed_operations
from models.booking_status_history import BookingStatusHistory
from models.customer import Customer
from models.service import Service
from models.service_center import ServiceCenter
from models.service_center_service import ServiceCenterService
from models.user import User
from models.vehicle import Vehicle
from utils.errors import NotFound, ValidationFailed
from utils.pagination import PaginationParams, paginate

SORT_FIELDS = {"date": "Date", "createdat": "CreatedAt", "status": "Status"}

# lifecycle order, so "Status Asc" reads Pending -> Cancelled
_STATUS_RANK = case(
    {status.value: rank for rank, status in enumerate(BookingStatus)},
    value=Booking.status,
    else_=len(BookingStatus),
)


@dataclass(frozen=True)
class BookingFilters:
    status: Optional[BookingStatus] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    sort_by: str = "Date"
    descending: bool = True

    @classmethod
    def from_args(cls, args) -> "BookingFilters":
        errors = []

        status = None
        if args.get("status"):
            status = BookingStatus.parse(args["status"])

        from_date = _date_arg(args, "fromDate", errors)
        to_date = _date_arg(args, "toDate", errors)
        if from_date and to_date and from_date > to_date:
            errors.append("fromDate must be on or before toDate")

        sort_by = SORT_FIELDS.get((args.get("sortBy") or "date").strip().lower())
        if sort_by is None:
            errors.append("sortBy must be one of: Date, CreatedAt, Status")

        order = (args.get("sortOrder") or "desc").strip().lower()
        if order not in ("asc", "desc"):
            errors.append("sortOrder must be Asc or Desc")

        if errors:
            raise ValidationFailed(errors)
        return cls(status=status, from_date=from_date, to_date=to_date, sort_by=sort_by, descending=order == "desc")


def _date_arg(args, name, errors):
    raw = args.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        errors.append(f"{name} must be an ISO date (YYYY-MM-DD)")
        return None


def effective_price():
    # center override when present, catalog base price otherwise
    return func.coalesce(ServiceCenterService.custom_price, Service.base_price).label("effective_price")


def _base_query(*extra):
    return (
        db.session.query(Booking, Vehicle, ServiceCenter, Service, effective_price(), *extra)
        .join(Vehicle, Vehicle.id == Booking.vehicle_id)
        .join(ServiceCenter, ServiceCenter.id == Booking.service_center_id)
        .join(Service, Service.id == Booking.service_id)
        .outerjoin(
            ServiceCenterService,
            and_(
                ServiceCenterService.service_center_id == Booking.service_center_id,
                ServiceCenterService.service_id == Booking.service_id,
            ),
        )
    )


def _apply_filters(query, filters: BookingFilters):
    if filters.status is not None:
        query = query.filter(Booking.status == filters.status)
    if filters.from_date is not None:
        query = query.filter(Booking.booking_date >= filters.from_date)
    if filters.to_date is not None:
        query = query.filter(Booking.booking_date <= filters.to_date)
    return query


def _apply_sort(query, filters: BookingFilters):
    if filters.sort_by == "CreatedAt":
        keys = [Booking.created_at]
    elif filters.sort_by == "Status":
        keys = [_STATUS_RANK, Booking.booking_date, Booking.booking_time]
    else:
        keys = [Booking.booking_date, Booking.booking_time]

    keys = [k.desc() if filters.descending else k.asc() for k in keys]
    # stable paging across equal keys
    keys.append(Booking.id.desc() if filters.descending else Booking.id.asc())
    return query.order_by(*keys)


def list_bookings(filters: BookingFilters, params: PaginationParams, customer_id: Optional[int] = None):
    """One page of list rows; scoped to `customer_id` when given, unscoped for staff."""
    query = _base_query()
    if customer_id is not None:
        query = query.filter(Booking.customer_id == customer_id)
    query = _apply_sort(_apply_filters(query, filters), filters)

    page = paginate(query, params)
    items = [serialize_list_row(*row) for row in page.items]
    return items, page


def get_booking_detail(booking_id: int, include_history: bool = False) -> dict:
    row = (
        _base_query(Customer, User)
        .join(Customer, Customer.id == Booking.customer_id)
        .join(User, User.id == Customer.user_id)
        .filter(Booking.id == booking_id)
        .first()
    )
    if row is None:
        raise NotFound("Booking", booking_id)

    data = serialize_detail(*row)
    if include_history:
        data["statusHistory"] = get_status_history(booking_id)
    return data


def get_status_history(booking_id: int) -> list:
    entries = (
        BookingStatusHistory.query
        .filter_by(booking_id=booking_id)
        .order_by(BookingStatusHistory.changed_at.asc(), BookingStatusHistory.id.asc())
        .all()
    )
    return [serialize_history(e) for e in entries]


# ---------- serializers ----------

def _iso(value):
    return value.isoformat() if value is not None else None


def _money(value):
    return float(value) if value is not None else None


def serialize_list_row(booking, vehicle, center, service, price) -> dict:
    return {
        "id": booking.id,
        "bookingNumber": booking.booking_number,
        "vehicleInfo": vehicle.display_name,
        "plateNumber": vehicle.plate_number,
        "serviceCenterName": center.name,
        "serviceName": service.name,
        "bookingDate": _iso(booking.booking_date),
        "bookingTime": booking.booking_time.strftime("%H:%M:%S"),
        "status": booking.current_status.value,
        "servicePrice": _money(price),
        "createdAt": _iso(booking.created_at),
    }


def serialize_detail(booking, vehicle, center, service, price, customer, user) -> dict:
    return {
        "id": booking.id,
        "bookingNumber": booking.booking_number,
        "customerId": customer.id,
        "customerName": user.full_name,
        "customerEmail": user.email,
        "customerPhone": user.phone_number,
        "vehicleId": vehicle.id,
        "vehicleInfo": vehicle.display_name,
        "plateNumber": vehicle.plate_number,
        "serviceCenterId": center.id,
        "serviceCenterName": center.name,
        "serviceCenterAddress": center.address,
        "serviceCenterPhone": center.phone_number,
        "serviceId": service.id,
        "serviceName": service.name,
        "servicePrice": _money(price),
        "estimatedDurationMinutes": service.estimated_duration_minutes,
        "bookingDate": _iso(booking.booking_date),
        "bookingTime": booking.booking_time.strftime("%H:%M:%S"),
        "bookingDateTime": _iso(booking.scheduled_at),
        "status": booking.current_status.value,
        "customerNotes": booking.customer_notes,
        "staffNotes": booking.staff_notes,
        "confirmedAt": _iso(booking.confirmed_at),
        "confirmedBy": booking.confirmed_by,
        "completedAt": _iso(booking.completed_at),
        "cancelledAt": _iso(booking.cancelled_at),
        "cancellationReason": booking.cancellation_reason,
        "createdAt": _iso(booking.created_at),
        "updatedAt": _iso(booking.updated_at),
        "canBeModified": booking.can_be_modified(),
        "canBeCancelledByCustomer": booking.can_be_cancelled_by_customer(),
        "isOverdue": booking.is_overdue(),
        "allowedOperations": allowed_operations(booking.current_status),
    }


def serialize_history(entry: BookingStatusHistory) -> dict:
    return {
        "id": entry.id,
        "oldStatus": entry.old_status,
        "newStatus": entry.new_status,
        "changedBy": entry.changed_by,
        "changedAt": _iso(entry.changed_at),
        "notes": entry.notes,
        "description": entry.description,
        "auditTrail": entry.audit_trail_entry,
    }
