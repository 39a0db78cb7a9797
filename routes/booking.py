from flask import Blueprint, request, jsonify, g

from models import db
from models.user import User
from models.booking import Booking
from security.rbac import require_roles
from services import bookings, reconciliation
from utils.auth_context import login_required
from utils.serializers import booking_to_dict, parse_date

booking_bp = Blueprint("booking", __name__)


def _booking_request(data):
    """roomId/checkIn/checkOut/guests from a JSON body, or an error response."""
    room_id = data.get("roomId")
    check_in = parse_date(data.get("checkIn"))
    check_out = parse_date(data.get("checkOut"))
    guests = data.get("guests", 1)

    if not room_id or not data.get("checkIn") or not data.get("checkOut"):
        return None, (jsonify(error="roomId, checkIn, checkOut are required"), 400)
    if check_in is None or check_out is None:
        return None, (jsonify(error="Invalid date. Use YYYY-MM-DD"), 400)
    try:
        room_id = int(room_id)
        guests = int(guests)
    except (TypeError, ValueError):
        return None, (jsonify(error="roomId and guests must be numbers"), 400)

    return (room_id, check_in, check_out, guests), None


def _own_booking(booking_id):
    booking = db.session.get(Booking, booking_id)
    if not booking or booking.user_id != g.user.id:
        return None
    return booking


# ---------- CUSTOMERS: book a room and pay ----------
@booking_bp.post("/bookings")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    parsed, failure = _booking_request(data)
    if failure:
        return failure
    room_id, check_in, check_out, guests = parsed

    booking, checkout_url = reconciliation.initiate_booking(g.user, room_id, check_in, check_out, guests)
    return jsonify(booking=booking_to_dict(booking), checkoutUrl=checkout_url), 201


@booking_bp.post("/bookings/<int:booking_id>/pay")
@login_required
def pay_booking(booking_id: int):
    if not _own_booking(booking_id):
        return jsonify(error="Booking not found"), 404

    checkout_url = reconciliation.pay_again(booking_id, g.user)
    return jsonify(checkoutUrl=checkout_url), 200


@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None

    if not _own_booking(booking_id):
        return jsonify(error="Booking not found"), 404

    booking, refund = reconciliation.cancel_booking(booking_id, actor=g.user.id, reason=reason)
    return jsonify(
        message="Booking cancelled. Refund initiated if applicable.",
        booking=booking_to_dict(booking),
        refundAmount=float(refund),
    ), 200


@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    status = request.args.get("status")  # pending/confirmed/cancelled/completed
    rows = bookings.list_for_guest(g.user.id, status=status)
    return jsonify([booking_to_dict(b) for b in rows]), 200


# ---------- RECEPTIONIST/ADMIN ----------
@booking_bp.get("/bookings")
@require_roles("RECEPTIONIST", "ADMIN")
def list_all_bookings():
    status = request.args.get("status")
    limit = request.args.get("limit", type=int) or 200
    rows = bookings.list_all(status=status, limit=max(1, min(limit, 500)))
    return jsonify([booking_to_dict(b, include_user=True) for b in rows]), 200


@booking_bp.post("/bookings/<int:booking_id>/complete")
@require_roles("RECEPTIONIST", "ADMIN")
def complete_booking(booking_id: int):
    booking = reconciliation.complete_booking(booking_id)
    return jsonify(message="Booking marked as completed", booking=booking_to_dict(booking)), 200


@booking_bp.post("/bookings/<int:booking_id>/admin_cancel")
@require_roles("RECEPTIONIST", "ADMIN")
def admin_cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or "Cancelled by staff"

    booking, refund = reconciliation.cancel_booking(booking_id, actor=g.user.id, reason=reason)
    return jsonify(
        message="Cancelled by staff",
        booking=booking_to_dict(booking),
        refundAmount=float(refund),
    ), 200


@booking_bp.post("/bookings/desk")
@require_roles("RECEPTIONIST", "ADMIN")
def desk_booking():
    data = request.get_json(silent=True) or {}
    parsed, failure = _booking_request(data)
    if failure:
        return failure
    room_id, check_in, check_out, guests = parsed

    payment_type = (data.get("paymentType") or "cash").strip().lower()
    if payment_type not in ("cash", "online"):
        return jsonify(error="paymentType must be cash or online"), 400

    guest = db.session.get(User, data.get("userId")) if data.get("userId") else None
    if not guest:
        return jsonify(error="Guest not found"), 404

    booking, checkout_url = reconciliation.book_at_desk(
        g.user, guest, room_id, check_in, check_out, guests, payment_type=payment_type,
    )
    return jsonify(booking=booking_to_dict(booking, include_user=True),
                   checkoutUrl=checkout_url), 201
