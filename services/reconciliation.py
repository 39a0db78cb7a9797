"""
Reconciliation service: the only place that talks to both the booking store
and the payment gateway.

Payment is a two-phase protocol. initiate_booking() holds the room and opens a
checkout session; verify_and_confirm(tx_ref) is driven later by whoever comes
back first (the browser redirect, the client app or the gateway webhook) and
is safe to call any number of times.
"""
from decimal import Decimal

from flask import current_app

from models.booking import CONFIRMED, COMPLETED, CANCELLED, PAYMENT_COMPLETED, PAYMENT_REFUNDED
from models.payment import SUPERSEDED, REFUNDED
from services import bookings
from services.errors import AmountMismatch, InvalidReference, InvalidTransition, RoomNotReservable, RoomUnavailable
from services.gateway import get_gateway
from utils.audit import log_event


def _currency():
    return current_app.config.get("PAYMENT_CURRENCY", "ETB")


def _same_amount(a, b) -> bool:
    if a is None or b is None:
        return False
    return Decimal(a).quantize(Decimal("0.01")) == Decimal(b).quantize(Decimal("0.01"))


def _gateway_refund(booking, amount):
    # cash is handed back at the desk
    payment = bookings.find_by_reference(booking.payment_ref)
    if payment is None or payment.provider != "STRIPE":
        return
    get_gateway().refund(booking.payment_ref, amount)


def initiate_booking(guest, room_id, check_in, check_out, guests, now=None):
    """create -> open checkout session -> attach reference. Returns (booking, checkout_url)."""
    booking = bookings.create(guest.id, room_id, check_in, check_out, guests, now=now)

    try:
        session = get_gateway().create_session(booking.id, booking.total_price, _currency(), guest.email)
        bookings.attach_payment_reference(booking.id, session.tx_ref, session.amount, session.currency)
    except BaseException as exc:
        # never leave a hold nobody can pay for
        current_app.logger.warning("Rolling back booking %s: %s", booking.id, exc)
        bookings.cancel(booking.id, actor="system", reason="Payment session could not be opened", now=now,
                        audit_action="BOOKING_ROLLBACK")
        raise

    log_event("PAYMENT_SESSION_CREATED", user_id=guest.id, entity="booking", entity_id=booking.id,
              metadata={"tx_ref": session.tx_ref})
    return booking, session.checkout_url


def pay_again(booking_id, guest, now=None) -> str:
    """New checkout session for a pending booking whose last payment failed."""
    booking = bookings.renew_hold(booking_id, now=now)
    old_ref = booking.payment_ref

    session = get_gateway().create_session(booking.id, booking.total_price, _currency(), guest.email)
    bookings.replace_payment_reference(booking.id, old_ref, session.tx_ref, session.amount, session.currency)

    log_event("PAYMENT_SESSION_CREATED", user_id=guest.id, entity="booking", entity_id=booking.id,
              metadata={"tx_ref": session.tx_ref, "replaces": old_ref})
    return session.checkout_url


def verify_and_confirm(tx_ref, now=None):
    """
    Merge the gateway's view of tx_ref into the booking.

    - unknown or superseded reference: InvalidReference
    - already confirmed: returned as is, the gateway is not asked again
    - paid, right amount: confirmed
    - paid, wrong amount: payment failed, flagged for review, AmountMismatch
    - gateway does not know the reference: payment failed, flagged, InvalidReference
    - not final yet (guest still on the checkout page): unchanged
    - final and unpaid: payment failed, booking stays pending
    GatewayUnreachable propagates without touching anything.
    """
    payment = bookings.find_by_reference(tx_ref)
    if payment is None:
        current_app.logger.warning("Verification for unknown tx_ref %s", tx_ref)
        log_event("PAYMENT_INVALID_REFERENCE", entity="payment", entity_id=tx_ref)
        raise InvalidReference(tx_ref=tx_ref)

    booking = bookings.get_booking(payment.booking_id)
    if payment.status == SUPERSEDED or booking.payment_ref != tx_ref:
        log_event("PAYMENT_INVALID_REFERENCE", entity="booking", entity_id=booking.id,
                  metadata={"tx_ref": tx_ref, "reason": "superseded"})
        raise InvalidReference("Payment reference was replaced by a newer session", tx_ref=tx_ref)

    if booking.status in (CONFIRMED, COMPLETED) and booking.payment_status == PAYMENT_COMPLETED:
        return booking
    if payment.status == REFUNDED or booking.payment_status == PAYMENT_REFUNDED:
        return booking

    try:
        result = get_gateway().verify(tx_ref)
    except InvalidReference:
        current_app.logger.warning("Gateway rejected tx_ref %s for booking %s", tx_ref, booking.id)
        if booking.status != CANCELLED:
            bookings.mark_failed(booking.id, tx_ref, raw_status="invalid_reference", needs_review=True, now=now)
        raise

    if not result.success:
        if result.final and booking.status not in (CANCELLED,):
            return bookings.mark_failed(booking.id, tx_ref, raw_status=result.raw_status, now=now)
        return bookings.get_booking(booking.id)

    if not _same_amount(result.amount_paid, booking.total_price):
        current_app.logger.warning(
            "Amount mismatch on booking %s: paid %s, expected %s (tx_ref %s)",
            booking.id, result.amount_paid, booking.total_price, tx_ref,
        )
        log_event("PAYMENT_AMOUNT_MISMATCH", entity="booking", entity_id=booking.id,
                  metadata={"tx_ref": tx_ref, "paid": result.amount_paid, "expected": booking.total_price})
        if booking.status not in (CANCELLED,):
            bookings.mark_failed(booking.id, tx_ref, raw_status=result.raw_status, needs_review=True, now=now)
        raise AmountMismatch(expected=str(booking.total_price), paid=str(result.amount_paid))

    if booking.status == CANCELLED:
        return _refund_late_payment(booking, tx_ref, result.amount_paid, now)

    try:
        return bookings.confirm(booking.id, tx_ref, amount_paid=result.amount_paid, now=now)
    except InvalidTransition:
        # cancelled (sweeper, guest) while the gateway was being asked
        current = bookings.get_booking(booking.id)
        if current.status != CANCELLED:
            raise
        return _refund_late_payment(current, tx_ref, result.amount_paid, now)
    except (RoomUnavailable, RoomNotReservable):
        # hold lapsed and the room went to someone else: give everything back
        current_app.logger.warning("Room lost for paid booking %s, refunding in full", booking.id)
        cancelled, _ = bookings.cancel(
            booking.id, actor="system", reason="Room taken after hold expired",
            now=now, refund_amount=result.amount_paid,
            issue_refund=lambda b, amount: get_gateway().refund(tx_ref, amount),
            audit_action="BOOKING_ROOM_LOST",
        )
        return cancelled


def _refund_late_payment(booking, tx_ref, amount, now=None):
    current_app.logger.warning("Payment %s arrived after booking %s was cancelled", tx_ref, booking.id)
    return bookings.record_refund(booking.id, tx_ref, amount, now=now,
                                  issue_refund=lambda b, value: get_gateway().refund(tx_ref, value))


def cancel_booking(booking_id, actor, reason=None, now=None):
    """Returns (booking, refunded_amount)."""
    return bookings.cancel(booking_id, actor=actor, reason=reason, now=now, issue_refund=_gateway_refund)


def complete_booking(booking_id, now=None):
    return bookings.complete(booking_id, now=now)


def book_at_desk(receptionist, guest, room_id, check_in, check_out, guests, payment_type="cash", now=None):
    """
    Receptionist booking on behalf of a guest. Cash is taken at the desk and
    confirms on the spot; online goes through the normal checkout.
    Returns (booking, checkout_url or None).
    """
    if payment_type != "cash":
        return initiate_booking(guest, room_id, check_in, check_out, guests, now=now)

    booking = bookings.create(guest.id, room_id, check_in, check_out, guests, now=now)
    tx_ref = f"CASH-{booking.id}"
    try:
        bookings.attach_payment_reference(booking.id, tx_ref, booking.total_price, _currency(), provider="CASH")
        booking = bookings.confirm(booking.id, tx_ref, amount_paid=booking.total_price, now=now)
    except BaseException:
        bookings.cancel(booking.id, actor="system", reason="Desk booking could not be recorded", now=now,
                        audit_action="BOOKING_ROLLBACK")
        raise

    log_event("BOOKING_DESK_CASH", user_id=receptionist.id, entity="booking", entity_id=booking.id,
              metadata={"guest_id": guest.id})
    return booking, None
