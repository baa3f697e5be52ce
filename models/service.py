from models.db import db
from utils.clock import utcnow

class Service(db.Model):
    __tablename__ = "services"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    base_price = db.Column(db.Numeric(10, 2), nullable=False)
    estimated_duration_minutes = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("base_price >= 0", name="ck_services_base_price"),
        db.CheckConstraint("estimated_duration_minutes > 0", name="ck_services_duration"),
    )
