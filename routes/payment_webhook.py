import stripe
from flask import Blueprint, request, jsonify, current_app

from services import reconciliation
from services.errors import AmountMismatch, GatewayUnreachable, InvalidReference, InvalidTransition
from utils.audit import log_event

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")

# every event that can change what verify() reports for a checkout session
HANDLED_EVENTS = (
    "checkout.session.completed",
    "checkout.session.expired",
    "checkout.session.async_payment_succeeded",
    "checkout.session.async_payment_failed",
)


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.data

    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify(error="Invalid webhook signature"), 400

    event_type = event["type"]
    if event_type not in HANDLED_EVENTS:
        return jsonify(received=True), 200

    session_id = event["data"]["object"]["id"]
    try:
        # the event payload is only a hint; the gateway is asked again
        booking = reconciliation.verify_and_confirm(session_id)
    except GatewayUnreachable:
        # non-2xx makes Stripe redeliver later
        return jsonify(error="Gateway unreachable, retry"), 503
    except (InvalidReference, AmountMismatch, InvalidTransition) as exc:
        log_event("WEBHOOK_REJECTED", entity="payment", entity_id=session_id,
                  metadata={"event": event_type, "code": exc.code})
        return jsonify(received=True, error=exc.code), 200

    return jsonify(received=True, booking_id=booking.id, status=booking.status), 200
