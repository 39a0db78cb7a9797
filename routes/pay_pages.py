from flask import Blueprint, request, current_app

from services import reconciliation
from services.errors import BookingError

pay_pages_bp = Blueprint("pay_pages", __name__)

PAGE = """
    <html>
      <head><title>{title}</title></head>
      <body style="font-family: system-ui; max-width: 720px; margin: 40px auto;">
        <h1>{title}</h1>
        <p>{message}</p>
        <a href="{link}" style="display: inline-block; padding: 12px 18px; background: #0ea5e9; color: white; text-decoration: none; border-radius: 8px; font-weight: 600;">Go to My Bookings</a>
      </body>
    </html>
    """


def _bookings_url():
    base_url = current_app.config.get("FRONTEND_BASE_URL", "http://localhost:3000").rstrip("/")
    return f"{base_url}/customer/bookings"


@pay_pages_bp.get("/pay/success")
def pay_success():
    # the gateway redirects here with ?session_id={CHECKOUT_SESSION_ID}
    tx_ref = (request.args.get("session_id") or "").strip()
    if not tx_ref:
        return PAGE.format(title="Payment", message="Missing payment reference.", link=_bookings_url()), 400

    try:
        booking = reconciliation.verify_and_confirm(tx_ref)
    except BookingError as exc:
        if exc.retryable:
            message = "We could not reach the payment provider yet. Your booking will update automatically."
        else:
            message = "Your payment could not be matched to this booking. Please retry payment from My Bookings."
        return PAGE.format(title="Payment pending review", message=message, link=_bookings_url()), exc.status_code

    if booking.status == "confirmed":
        title, message = "Payment Successful", f"Booking #{booking.id} is confirmed."
    elif booking.payment_status == "refunded":
        title, message = "Payment Refunded", "The room was no longer available, your payment has been refunded."
    elif booking.payment_status == "failed":
        title, message = "Payment Failed", "No payment was taken. You can pay again from My Bookings."
    else:
        title, message = "Payment Processing", "Your booking will be confirmed as soon as the payment clears."
    return PAGE.format(title=title, message=message, link=_bookings_url()), 200


@pay_pages_bp.get("/pay/cancel")
def pay_cancel():
    # booking keeps its hold until it expires or the guest pays again
    return PAGE.format(
        title="Payment Cancelled",
        message="No payment was taken. Your room is held for a short while; you can pay again from My Bookings.",
        link=_bookings_url(),
    ), 200
