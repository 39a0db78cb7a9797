from flask import Blueprint, request, jsonify, g

from services import bookings, reconciliation
from utils.auth_context import login_required
from utils.serializers import booking_to_dict

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")

STAFF_ROLES = ("RECEPTIONIST", "ADMIN")


# client-side verification after the gateway redirects the guest back
@payments_bp.post("/verify")
@login_required
def verify_payment():
    data = request.get_json(silent=True) or {}
    tx_ref = (data.get("tx_ref") or data.get("txRef") or "").strip()
    if not tx_ref:
        return jsonify(error="tx_ref required"), 400

    # guests may only verify their own payments; unknown refs fall through to INVALID_REFERENCE
    payment = bookings.find_by_reference(tx_ref)
    if payment is not None and payment.booking.user_id != g.user.id and not g.user.has_role(*STAFF_ROLES):
        return jsonify(error="Booking not found"), 404

    booking = reconciliation.verify_and_confirm(tx_ref)
    return jsonify(
        status="success" if booking.status == "confirmed" else booking.payment_status,
        booking=booking_to_dict(booking),
    ), 200
