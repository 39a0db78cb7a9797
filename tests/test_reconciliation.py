"""
Two-phase payment: initiate, verify, cancel and desk bookings
"""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
import sqlalchemy as sa

from models import db
from models.audit_log import AuditLog
from models.booking import Booking
from services import bookings, ledger, reconciliation, sweeper
from services.errors import (
    AmountMismatch, GatewayUnreachable, InvalidReference, InvalidTransition, RoomUnavailable,
)

CHECK_IN = date(2025, 3, 1)
CHECK_OUT = date(2025, 3, 3)


def _audit_count(action):
    return AuditLog.query.filter_by(action=action).count()


class TestInitiate:

    def test_opens_checkout_session(self, pending_booking, gateway):
        assert pending_booking.status == "pending"
        assert pending_booking.payment_ref in gateway.sessions
        assert gateway.sessions[pending_booking.payment_ref]["amount"] == Decimal("2400")
        assert len(pending_booking.payments) == 1

    def test_session_failure_releases_room(self, room, guest, gateway, booking_day):
        gateway.fail_create = GatewayUnreachable()

        with pytest.raises(GatewayUnreachable):
            reconciliation.initiate_booking(guest, room.id, CHECK_IN, CHECK_OUT, 2, now=booking_day)

        b = Booking.query.one()
        assert b.status == "cancelled"
        assert b.released_at is not None
        assert ledger.is_available(room.id, CHECK_IN, CHECK_OUT, now=booking_day)
        assert _audit_count("BOOKING_ROLLBACK") == 1
        assert _audit_count("BOOKING_EXPIRE") == 0

    def test_second_guest_gets_room_unavailable(self, pending_booking, room, other_guest, booking_day):
        with pytest.raises(RoomUnavailable):
            reconciliation.initiate_booking(other_guest, room.id, date(2025, 3, 2), date(2025, 3, 4), 1,
                                            now=booking_day + timedelta(minutes=5))


class TestVerify:

    def test_paid_session_confirms(self, pending_booking, gateway, booking_day):
        ref = pending_booking.payment_ref
        gateway.pay(ref)

        b = reconciliation.verify_and_confirm(ref, now=booking_day + timedelta(minutes=10))

        assert b.status == "confirmed"
        assert b.payment_status == "completed"
        payment = bookings.find_by_reference(ref)
        assert payment.status == "PAID"
        assert payment.amount_paid == Decimal("2400")

    def test_verify_is_idempotent(self, pending_booking, gateway, booking_day):
        ref = pending_booking.payment_ref
        gateway.pay(ref)
        later = booking_day + timedelta(minutes=10)

        first = reconciliation.verify_and_confirm(ref, now=later)
        second = reconciliation.verify_and_confirm(ref, now=later)

        assert first.id == second.id
        assert second.status == "confirmed"
        assert gateway.verify_calls == [ref]
        assert _audit_count("BOOKING_CONFIRM") == 1

    def test_amount_mismatch_flags_booking(self, pending_booking, gateway, room, booking_day):
        ref = pending_booking.payment_ref
        gateway.pay(ref, amount="2000")
        later = booking_day + timedelta(minutes=10)

        with pytest.raises(AmountMismatch):
            reconciliation.verify_and_confirm(ref, now=later)

        b = bookings.get_booking(pending_booking.id)
        assert b.status == "pending"
        assert b.payment_status == "failed"
        assert b.needs_review is True
        assert not ledger.is_available(room.id, CHECK_IN, CHECK_OUT, now=later)
        assert _audit_count("PAYMENT_AMOUNT_MISMATCH") == 1

    def test_unknown_reference(self, pending_booking, gateway):
        with pytest.raises(InvalidReference):
            reconciliation.verify_and_confirm("cs_does_not_exist")
        assert gateway.verify_calls == []

    def test_gateway_unreachable_changes_nothing(self, pending_booking, gateway, booking_day):
        gateway.unreachable = True

        with pytest.raises(GatewayUnreachable):
            reconciliation.verify_and_confirm(pending_booking.payment_ref, now=booking_day)

        b = bookings.get_booking(pending_booking.id)
        assert b.status == "pending"
        assert b.payment_status == "pending"

    def test_open_session_leaves_booking_pending(self, pending_booking, booking_day):
        b = reconciliation.verify_and_confirm(pending_booking.payment_ref, now=booking_day)
        assert b.status == "pending"
        assert b.payment_status == "pending"

    def test_expired_session_marks_payment_failed(self, pending_booking, gateway, booking_day):
        gateway.expire(pending_booking.payment_ref)

        b = reconciliation.verify_and_confirm(pending_booking.payment_ref, now=booking_day)
        assert b.status == "pending"
        assert b.payment_status == "failed"
        assert bookings.find_by_reference(pending_booking.payment_ref).raw_status == "expired/unpaid"

    def test_gateway_rejects_reference(self, pending_booking, gateway, booking_day):
        del gateway.sessions[pending_booking.payment_ref]

        with pytest.raises(InvalidReference):
            reconciliation.verify_and_confirm(pending_booking.payment_ref, now=booking_day)

        b = bookings.get_booking(pending_booking.id)
        assert b.payment_status == "failed"
        assert b.needs_review is True


class TestPayAgain:

    def test_new_session_supersedes_old(self, pending_booking, gateway, guest, booking_day):
        old_ref = pending_booking.payment_ref
        gateway.expire(old_ref)
        reconciliation.verify_and_confirm(old_ref, now=booking_day)

        url = reconciliation.pay_again(pending_booking.id, guest, now=booking_day + timedelta(minutes=5))
        new_ref = bookings.get_booking(pending_booking.id).payment_ref
        assert new_ref != old_ref
        assert url.endswith(new_ref)

        with pytest.raises(InvalidReference):
            reconciliation.verify_and_confirm(old_ref, now=booking_day + timedelta(minutes=6))

        gateway.pay(new_ref)
        b = reconciliation.verify_and_confirm(new_ref, now=booking_day + timedelta(minutes=7))
        assert b.status == "confirmed"

    def test_requires_failed_payment(self, pending_booking, guest, booking_day):
        with pytest.raises(InvalidTransition):
            reconciliation.pay_again(pending_booking.id, guest, now=booking_day)


class TestCancel:

    def test_cancel_day_before_check_in(self, pending_booking, gateway, guest, room, booking_day):
        ref = pending_booking.payment_ref
        gateway.pay(ref)
        reconciliation.verify_and_confirm(ref, now=booking_day + timedelta(minutes=10))

        when = datetime(2025, 2, 28, 10, 0)
        b, refund = reconciliation.cancel_booking(pending_booking.id, actor=guest.id, reason="plans changed", now=when)

        assert refund == Decimal("2280.00")
        assert gateway.refunds == [(ref, Decimal("2280.00"))]
        assert b.status == "cancelled"
        assert b.payment_status == "refunded"
        assert ledger.is_available(room.id, CHECK_IN, CHECK_OUT, now=when)
        assert _audit_count("BOOKING_CANCEL") == 1

    def test_refund_failure_keeps_booking(self, pending_booking, gateway, guest, booking_day):
        ref = pending_booking.payment_ref
        gateway.pay(ref)
        reconciliation.verify_and_confirm(ref, now=booking_day + timedelta(minutes=10))
        gateway.unreachable = True

        with pytest.raises(GatewayUnreachable):
            reconciliation.cancel_booking(pending_booking.id, actor=guest.id, now=datetime(2025, 2, 28))

        b = bookings.get_booking(pending_booking.id)
        assert b.status == "confirmed"
        assert b.payment_status == "completed"


class TestLatePayments:

    def test_payment_after_expiry_is_refunded(self, pending_booking, gateway, booking_day):
        ref = pending_booking.payment_ref
        sweeper.run_sweep(now=booking_day + timedelta(minutes=31))
        assert bookings.get_booking(pending_booking.id).status == "cancelled"

        gateway.pay(ref)
        b = reconciliation.verify_and_confirm(ref, now=booking_day + timedelta(minutes=40))

        assert b.status == "cancelled"
        assert b.payment_status == "refunded"
        assert b.refund_amount == Decimal("2400")
        assert gateway.refunds == [(ref, Decimal("2400"))]

        again = reconciliation.verify_and_confirm(ref, now=booking_day + timedelta(minutes=41))
        assert again.payment_status == "refunded"
        assert len(gateway.refunds) == 1

    def test_cancelled_while_gateway_was_asked(self, pending_booking, gateway, booking_day, monkeypatch):
        ref = pending_booking.payment_ref
        gateway.pay(ref)
        expired_at = booking_day + timedelta(minutes=31)
        real_verify = gateway.verify

        def verify_after_sweep(tx_ref):
            # the sweeper commits on its own connection while the gateway answers
            with db.engine.begin() as conn:
                conn.execute(
                    sa.update(Booking)
                    .where(Booking.id == pending_booking.id)
                    .values(status="cancelled", cancelled_at=expired_at, cancelled_by="system",
                            released_at=expired_at)
                )
            return real_verify(tx_ref)

        monkeypatch.setattr(gateway, "verify", verify_after_sweep)

        b = reconciliation.verify_and_confirm(ref, now=booking_day + timedelta(minutes=32))

        assert b.status == "cancelled"
        assert b.payment_status == "refunded"
        assert b.refund_amount == Decimal("2400")
        assert gateway.refunds == [(ref, Decimal("2400"))]
        assert bookings.find_by_reference(ref).status == "REFUNDED"

    def test_room_taken_after_hold_lapsed(self, pending_booking, gateway, room, other_guest, booking_day):
        ref = pending_booking.payment_ref
        rival, _ = reconciliation.initiate_booking(other_guest, room.id, CHECK_IN, CHECK_OUT, 1,
                                                   now=booking_day + timedelta(minutes=40))

        gateway.pay(ref)
        b = reconciliation.verify_and_confirm(ref, now=booking_day + timedelta(minutes=45))

        assert b.status == "cancelled"
        assert b.payment_status == "refunded"
        assert b.refund_amount == Decimal("2400")
        assert gateway.refunds == [(ref, Decimal("2400"))]
        assert bookings.get_booking(rival.id).status == "pending"
        assert _audit_count("BOOKING_ROOM_LOST") == 1

    def test_paid_inside_lapsed_hold_when_room_still_free(self, pending_booking, gateway, booking_day):
        ref = pending_booking.payment_ref
        gateway.pay(ref)

        b = reconciliation.verify_and_confirm(ref, now=booking_day + timedelta(minutes=45))
        assert b.status == "confirmed"
        assert gateway.refunds == []


class TestDeskBooking:

    def test_cash_confirms_immediately(self, receptionist, guest, room, gateway, booking_day):
        b, url = reconciliation.book_at_desk(receptionist, guest, room.id, CHECK_IN, CHECK_OUT, 2,
                                             payment_type="cash", now=booking_day)

        assert url is None
        assert b.status == "confirmed"
        assert b.payment_status == "completed"
        assert b.payment_ref == f"CASH-{b.id}"
        assert bookings.find_by_reference(b.payment_ref).provider == "CASH"
        assert gateway.sessions == {}
        assert _audit_count("BOOKING_DESK_CASH") == 1

    def test_cash_refund_stays_at_desk(self, receptionist, guest, room, gateway, booking_day):
        b, _ = reconciliation.book_at_desk(receptionist, guest, room.id, CHECK_IN, CHECK_OUT, 2, now=booking_day)

        b, refund = reconciliation.cancel_booking(b.id, actor=receptionist.id, now=datetime(2025, 2, 20))
        assert refund == Decimal("2280.00")
        assert b.payment_status == "refunded"
        assert gateway.refunds == []

    def test_online_goes_through_checkout(self, receptionist, guest, room, gateway, booking_day):
        b, url = reconciliation.book_at_desk(receptionist, guest, room.id, CHECK_IN, CHECK_OUT, 2,
                                             payment_type="online", now=booking_day)
        assert b.status == "pending"
        assert url is not None
        assert b.payment_ref in gateway.sessions
