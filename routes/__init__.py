from flask import Blueprint, jsonify

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    return jsonify(status="ok"), 200


from .booking import booking_bp
from .rooms import rooms_bp
from .payments import payments_bp
from .payment_webhook import webhook_bp
from .pay_pages import pay_pages_bp
