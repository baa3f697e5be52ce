from models.db import db
from utils.clock import utcnow

class BookingStatusHistory(db.Model):
    """
    One row per status change of a booking. Rows are only ever created by the
    transition methods on Booking and are never updated afterwards.
    """
    __tablename__ = "booking_status_history"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(
        db.Integer,
        db.ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    old_status = db.Column(db.String(20), nullable=True)  # NULL only for the creation entry
    new_status = db.Column(db.String(20), nullable=False)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    changed_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)

    @property
    def description(self) -> str:
        if not self.old_status:
            return f"Booking created with status '{self.new_status}'"
        return f"Status changed from '{self.old_status}' to '{self.new_status}'"

    @property
    def audit_trail_entry(self) -> str:
        notes = f" - {self.notes}" if self.notes else ""
        return f"[{self.changed_at:%Y-%m-%d %H:%M:%S}] {self.description} by User #{self.changed_by}{notes}"
