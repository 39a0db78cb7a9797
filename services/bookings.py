"""
Booking record store and its state machine.

    pending   -> confirmed | cancelled
    confirmed -> completed | cancelled
    cancelled, completed: terminal

Every mutating call locks the booking row first (no-op UPDATE of
bookings.lock_version) so that a browser redirect and a gateway callback
racing on the same booking apply their transition one after the other.
"""
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import (
    Booking, PENDING, CONFIRMED, CANCELLED, COMPLETED,
    PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_REFUNDED,
)
from models.payment import Payment, INIT, PAID, FAILED, SUPERSEDED, REFUNDED
from services import ledger
from services.errors import (
    AlreadyAttached, BookingNotFound, CapacityExceeded, InvalidDateRange,
    InvalidReference, InvalidTransition,
)
from services.refund_policy import compute_refund, ZERO
from utils.audit import log_event


@contextmanager
def _unit_of_work():
    try:
        yield
        db.session.commit()
    except BaseException:
        db.session.rollback()
        raise


def _lock_booking(booking_id) -> Booking:
    result = db.session.execute(
        sa.update(Booking)
        .where(Booking.id == booking_id)
        .values(lock_version=Booking.lock_version + 1, updated_at=Booking.updated_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise BookingNotFound(booking_id=booking_id)
    return db.session.get(Booking, booking_id, populate_existing=True)


def _payment(tx_ref):
    return Payment.query.filter_by(tx_ref=tx_ref).first()


# ---------- queries ----------
def get_booking(booking_id) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFound(booking_id=booking_id)
    return booking


def find_by_reference(tx_ref):
    """Payment attempt for tx_ref (current or superseded), or None."""
    if not tx_ref:
        return None
    return _payment(tx_ref)


def list_for_guest(user_id, status=None):
    q = Booking.query.filter_by(user_id=user_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Booking.created_at.desc()).all()


def list_all(status=None, limit=200):
    q = Booking.query
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Booking.created_at.desc()).limit(limit).all()


# ---------- lifecycle ----------
def create(guest_id, room_id, check_in, check_out, guests, now=None) -> Booking:
    now = now or datetime.utcnow()

    if check_in >= check_out or check_in < now.date():
        raise InvalidDateRange(check_in=check_in.isoformat(), check_out=check_out.isoformat())

    with _unit_of_work():
        # the room is read only once its row lock is held
        room = ledger.lock_room(room_id)

        if guests is None or guests < 1 or guests > room.capacity:
            raise CapacityExceeded(capacity=room.capacity, guests=guests)

        nights = (check_out - check_in).days
        booking = Booking(
            user_id=guest_id,
            check_in=check_in,
            check_out=check_out,
            guests=guests,
            total_price=Decimal(room.price) * nights,
            status=PENDING,
            payment_status=PAYMENT_PENDING,
            created_at=now,
        )
        ledger.reserve(room.id, check_in, check_out, booking, now)

    log_event("BOOKING_CREATE", user_id=guest_id, entity="booking", entity_id=booking.id,
              metadata={"room_id": room.id, "check_in": check_in, "check_out": check_out})
    return booking


def attach_payment_reference(booking_id, tx_ref, amount, currency, provider="STRIPE") -> Payment:
    try:
        with _unit_of_work():
            booking = _lock_booking(booking_id)
            if booking.payment_ref is not None:
                raise AlreadyAttached(booking_id=booking_id)
            if booking.status != PENDING:
                raise InvalidTransition("Only pending bookings take a payment session", status=booking.status)

            payment = Payment(booking_id=booking.id, provider=provider, tx_ref=tx_ref,
                              amount=amount, currency=currency, status=INIT)
            db.session.add(payment)
            booking.payment_ref = tx_ref
    except IntegrityError:
        # tx_ref already bound to another booking
        raise AlreadyAttached(booking_id=booking_id, tx_ref=tx_ref)
    return payment


def replace_payment_reference(booking_id, expected_ref, tx_ref, amount, currency, provider="STRIPE") -> Payment:
    """Supersede the current session with a new one (pay again)."""
    try:
        with _unit_of_work():
            booking = _lock_booking(booking_id)
            if booking.status != PENDING:
                raise InvalidTransition("Only pending bookings take a payment session", status=booking.status)
            if booking.payment_ref != expected_ref:
                # someone else already replaced it
                raise AlreadyAttached(booking_id=booking_id)

            old = _payment(expected_ref) if expected_ref else None
            if old is not None:
                old.status = SUPERSEDED

            payment = Payment(booking_id=booking.id, provider=provider, tx_ref=tx_ref,
                              amount=amount, currency=currency, status=INIT)
            db.session.add(payment)
            booking.payment_ref = tx_ref
            booking.payment_status = PAYMENT_PENDING
    except IntegrityError:
        raise AlreadyAttached(booking_id=booking_id, tx_ref=tx_ref)

    log_event("PAYMENT_REFERENCE_REPLACED", user_id=None, entity="booking", entity_id=booking_id,
              metadata={"old_tx_ref": expected_ref, "tx_ref": tx_ref})
    return payment


def confirm(booking_id, tx_ref, amount_paid=None, now=None) -> Booking:
    """
    pending -> confirmed, paymentStatus -> completed.

    Confirming an already confirmed booking with the same reference is a
    no-op. When the hold lapsed before the payment arrived the room is
    claimed again, which raises RoomUnavailable if it was taken meanwhile.
    """
    now = now or datetime.utcnow()
    changed = False

    with _unit_of_work():
        booking = _lock_booking(booking_id)

        if booking.status in (CONFIRMED, COMPLETED) and booking.payment_status == PAYMENT_COMPLETED:
            if booking.payment_ref == tx_ref:
                return booking
            raise InvalidTransition("Booking already paid with another reference", status=booking.status)

        if booking.payment_ref != tx_ref:
            raise InvalidReference("Payment reference is not the booking's current one", tx_ref=tx_ref)

        if not booking.can_transition(CONFIRMED):
            raise InvalidTransition(status=booking.status, to=CONFIRMED)

        hold_lapsed = booking.hold_expires_at is None or booking.hold_expires_at <= now
        if hold_lapsed or booking.released_at is not None:
            ledger.reserve(booking.room_id, booking.check_in, booking.check_out, booking, now)

        booking.status = CONFIRMED
        booking.payment_status = PAYMENT_COMPLETED

        payment = _payment(tx_ref)
        if payment is not None:
            payment.status = PAID
            payment.amount_paid = amount_paid if amount_paid is not None else payment.amount
            payment.verified_at = now
        changed = True

    if changed:
        log_event("BOOKING_CONFIRM", user_id=None, entity="booking", entity_id=booking.id,
                  metadata={"tx_ref": tx_ref, "amount_paid": amount_paid})
    return booking


def mark_failed(booking_id, tx_ref, raw_status=None, needs_review=False, now=None) -> Booking:
    """Payment attempt failed. The booking stays pending and keeps its hold."""
    now = now or datetime.utcnow()

    with _unit_of_work():
        booking = _lock_booking(booking_id)
        if booking.payment_ref != tx_ref:
            raise InvalidReference("Payment reference is not the booking's current one", tx_ref=tx_ref)
        if booking.status != PENDING:
            raise InvalidTransition("Only pending bookings can fail payment", status=booking.status)

        booking.payment_status = PAYMENT_FAILED
        if needs_review:
            booking.needs_review = True

        payment = _payment(tx_ref)
        if payment is not None:
            payment.status = FAILED
            payment.raw_status = raw_status
            payment.verified_at = now

    log_event("PAYMENT_FAILED", user_id=None, entity="booking", entity_id=booking.id,
              metadata={"tx_ref": tx_ref, "raw_status": raw_status, "needs_review": needs_review})
    return booking


def cancel(booking_id, actor, reason=None, now=None, issue_refund=None, refund_amount=None,
           audit_action="BOOKING_CANCEL"):
    """
    Cancel and release the room. Returns (booking, refunded_amount).

    `audit_action` names the audit row: the sweeper records BOOKING_EXPIRE,
    rollbacks of half-made bookings BOOKING_ROLLBACK.

    The refund comes from the cancellation policy unless `refund_amount` is
    given. `issue_refund(booking, amount)` moves the money; it runs inside
    the locked transaction so a gateway failure leaves the booking untouched.
    """
    now = now or datetime.utcnow()
    cfg = current_app.config

    with _unit_of_work():
        booking = _lock_booking(booking_id)
        if not booking.can_transition(CANCELLED):
            raise InvalidTransition(status=booking.status, to=CANCELLED)

        if refund_amount is None:
            refund = compute_refund(
                booking, now,
                fee_percent=cfg.get("CANCELLATION_FEE_PERCENT", 5),
                check_in_hour=cfg.get("CHECK_IN_HOUR", 14),
            )
        else:
            refund = Decimal(refund_amount)

        if refund > ZERO and issue_refund is not None:
            issue_refund(booking, refund)

        booking.status = CANCELLED
        booking.cancelled_at = now
        booking.cancelled_by = str(actor)
        booking.cancel_reason = (reason or "")[:160] or None
        ledger.release(booking.room_id, booking.id, now)

        if refund > ZERO:
            booking.payment_status = PAYMENT_REFUNDED
            booking.refund_amount = refund
            payment = _payment(booking.payment_ref)
            if payment is not None:
                payment.status = REFUNDED

    log_event(audit_action, user_id=actor if isinstance(actor, int) else None, entity="booking",
              entity_id=booking.id, metadata={"reason": reason, "refund": refund})
    return booking, refund


def complete(booking_id, now=None) -> Booking:
    """Receptionist check-out: confirmed -> completed once the stay is over."""
    now = now or datetime.utcnow()

    with _unit_of_work():
        booking = _lock_booking(booking_id)
        if not booking.can_transition(COMPLETED):
            raise InvalidTransition(status=booking.status, to=COMPLETED)
        if booking.check_out > now.date():
            raise InvalidTransition("Stay has not reached its check-out date", status=booking.status)

        booking.status = COMPLETED
        ledger.refresh_room_availability(booking.room, now)

    log_event("BOOKING_COMPLETE", user_id=None, entity="booking", entity_id=booking.id)
    return booking


def renew_hold(booking_id, now=None) -> Booking:
    """Re-claim the room for a pending booking whose payment failed."""
    now = now or datetime.utcnow()

    with _unit_of_work():
        booking = _lock_booking(booking_id)
        if booking.status != PENDING or booking.payment_status != PAYMENT_FAILED:
            raise InvalidTransition("Only pending bookings with a failed payment can be paid again",
                                    status=booking.status, payment_status=booking.payment_status)
        ledger.reserve(booking.room_id, booking.check_in, booking.check_out, booking, now)

    return booking


def record_refund(booking_id, tx_ref, amount, now=None, issue_refund=None) -> Booking:
    """
    A payment that landed on a booking that was already cancelled goes
    straight back. `issue_refund(booking, amount)` runs under the booking
    lock; a second caller finds the booking refunded and moves no money.
    """
    now = now or datetime.utcnow()

    with _unit_of_work():
        booking = _lock_booking(booking_id)
        if booking.status != CANCELLED:
            raise InvalidTransition("Only cancelled bookings refund a late payment", status=booking.status)
        if booking.payment_status == PAYMENT_REFUNDED:
            return booking
        if issue_refund is not None:
            issue_refund(booking, amount)

        payment = _payment(tx_ref)
        if payment is not None:
            payment.status = REFUNDED
            payment.amount_paid = amount
            payment.verified_at = now
        booking.payment_status = PAYMENT_REFUNDED
        booking.refund_amount = amount

    log_event("PAYMENT_REFUNDED", user_id=None, entity="booking", entity_id=booking.id,
              metadata={"tx_ref": tx_ref, "amount": amount, "reason": "late_payment"})
    return booking
