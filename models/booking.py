from datetime import datetime
from models.db import db

# status values (shared with the frontend, keep lowercase)
PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
COMPLETED = "completed"

# paymentStatus values
PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

TRANSITIONS = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {COMPLETED, CANCELLED},
    CANCELLED: set(),
    COMPLETED: set(),
}

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    room_id = db.Column(db.Integer, db.ForeignKey("rooms.id"), nullable=False, index=True)

    check_in = db.Column(db.Date, nullable=False)
    check_out = db.Column(db.Date, nullable=False)
    guests = db.Column(db.Integer, nullable=False, default=1)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=PENDING)
    payment_status = db.Column(db.String(20), nullable=False, default=PAYMENT_PENDING)

    # tx_ref of the current payment session; older ones live in payments
    payment_ref = db.Column(db.String(255), nullable=True, unique=True, index=True)

    # pending bookings hold the room until this moment
    hold_expires_at = db.Column(db.DateTime, nullable=True)
    released_at = db.Column(db.DateTime, nullable=True)

    refund_amount = db.Column(db.Numeric(12, 2), nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.String(40), nullable=True)  # user id or "system"
    cancel_reason = db.Column(db.String(160), nullable=True)

    # amount mismatch / unknown reference, for manual follow-up
    needs_review = db.Column(db.Boolean, nullable=False, default=False)

    lock_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = db.relationship("User")
    room = db.relationship("Room")
    payments = db.relationship("Payment", back_populates="booking", order_by="Payment.id")

    __table_args__ = (
        db.CheckConstraint("check_in < check_out", name="ck_booking_dates"),
        db.Index("ix_bookings_room_dates", "room_id", "check_in", "check_out"),
    )

    @property
    def nights(self):
        return (self.check_out - self.check_in).days

    def can_transition(self, new_status):
        return new_status in TRANSITIONS.get(self.status, set())
