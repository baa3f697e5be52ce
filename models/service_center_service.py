from models.db import db
from utils.clock import utcnow

class ServiceCenterService(db.Model):
    """Catalog link: a service offered at a center, optionally at a center-specific price."""
    __tablename__ = "service_center_services"

    id = db.Column(db.Integer, primary_key=True)
    service_center_id = db.Column(db.Integer, db.ForeignKey("service_centers.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)

    custom_price = db.Column(db.Numeric(10, 2), nullable=True)  # NULL -> services.base_price
    is_available = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("service_center_id", "service_id", name="uq_center_service"),
    )
