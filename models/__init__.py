from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .customer import Customer
from .vehicle import Vehicle
from .service_center import ServiceCenter
from .service import Service
from .service_center_service import ServiceCenterService
from .booking_status_history import BookingStatusHistory
from .booking import Booking, BookingStatus
