from datetime import datetime
from models.db import db

# payment attempt status values
INIT = "INIT"
PAID = "PAID"
FAILED = "FAILED"
SUPERSEDED = "SUPERSEDED"
REFUNDED = "REFUNDED"

class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    provider = db.Column(db.String(20), nullable=False, default="STRIPE")  # STRIPE, CASH
    tx_ref = db.Column(db.String(255), nullable=False, unique=True, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="ETB")

    status = db.Column(db.String(20), nullable=False, default=INIT)  # INIT, PAID, FAILED, SUPERSEDED, REFUNDED
    raw_status = db.Column(db.String(40), nullable=True)  # last status seen at the gateway
    amount_paid = db.Column(db.Numeric(12, 2), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    verified_at = db.Column(db.DateTime, nullable=True)

    booking = db.relationship("Booking", back_populates="payments")
