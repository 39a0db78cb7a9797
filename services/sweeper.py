"""Periodic housekeeping for bookings, run from the CLI (cron or run-sweeper)."""
from datetime import datetime

from flask import current_app

from models.booking import Booking, PENDING, CONFIRMED, PAYMENT_COMPLETED
from services import bookings
from services.errors import InvalidTransition


def expire_stale_bookings(now=None):
    """Cancel unpaid pending bookings whose hold ran out. Returns their ids."""
    now = now or datetime.utcnow()
    stale = (
        Booking.query
        .filter(
            Booking.status == PENDING,
            Booking.payment_status != PAYMENT_COMPLETED,
            Booking.hold_expires_at <= now,
        )
        .order_by(Booking.id.asc())
        .all()
    )

    expired = []
    for b in stale:
        try:
            bookings.cancel(b.id, actor="system", reason="Payment window expired", now=now,
                            audit_action="BOOKING_EXPIRE")
        except InvalidTransition:
            # confirmed by a late callback between the query and the lock
            current_app.logger.info("Booking %s no longer pending, skipped", b.id)
            continue
        expired.append(b.id)
    return expired


def complete_finished_stays(now=None):
    """Confirmed bookings whose check-out date has arrived become completed."""
    now = now or datetime.utcnow()
    finished = (
        Booking.query
        .filter(Booking.status == CONFIRMED, Booking.check_out <= now.date())
        .order_by(Booking.id.asc())
        .all()
    )

    completed = []
    for b in finished:
        try:
            bookings.complete(b.id, now=now)
        except InvalidTransition:
            continue
        completed.append(b.id)
    return completed


def run_sweep(now=None):
    now = now or datetime.utcnow()
    return {
        "expired": expire_stale_bookings(now),
        "completed": complete_finished_stays(now),
    }
