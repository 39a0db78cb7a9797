"""
Payment gateway client.

Stripe Checkout is the hosted checkout page: the Checkout Session id is the
transaction reference (tx_ref) the rest of the system keys payments by.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import stripe
from flask import current_app

from services.errors import GatewayNotConfigured, GatewayUnreachable, InvalidReference

# currencies Stripe treats as having no minor unit
ZERO_DECIMAL_CURRENCIES = {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
                           "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}


@dataclass
class PaymentSession:
    tx_ref: str
    checkout_url: str
    amount: Decimal
    currency: str


@dataclass
class VerificationResult:
    success: bool
    amount_paid: Optional[Decimal]
    raw_status: str
    final: bool = True


class PaymentGateway:
    """Interface the reconciliation service talks to."""

    def create_session(self, booking_id, amount, currency, guest_contact) -> PaymentSession:
        raise NotImplementedError

    def verify(self, tx_ref) -> VerificationResult:
        raise NotImplementedError

    def refund(self, tx_ref, amount) -> str:
        raise NotImplementedError


def to_minor_units(amount, currency: str) -> int:
    amount = Decimal(amount)
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value, currency: str) -> Decimal:
    if value is None:
        return None
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(value)
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


def _success_url(base: str) -> str:
    # Stripe fills in {CHECKOUT_SESSION_ID}; it must stay unencoded
    sep = "&" if "?" in base else "?"
    return f"{base}{sep}session_id={{CHECKOUT_SESSION_ID}}"


def _cancel_url(base: str, booking_id) -> str:
    sep = "&" if "?" in base else "?"
    return f"{base}{sep}booking_id={booking_id}"


class StripeGateway(PaymentGateway):

    def __init__(self, secret_key=None, success_url=None, cancel_url=None, timeout=10):
        self.secret_key = secret_key
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY"),
            success_url=config.get("PAYMENT_SUCCESS_URL"),
            cancel_url=config.get("PAYMENT_CANCEL_URL"),
            timeout=config.get("PAYMENT_TIMEOUT_SECONDS", 10),
        )

    def _configure(self):
        if not self.secret_key:
            raise GatewayNotConfigured("Stripe secret key missing (STRIPE_SECRET_KEY)")
        stripe.api_key = self.secret_key
        # one bounded attempt per call; callers and webhook redelivery retry
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise GatewayUnreachable(str(exc.user_message or exc))
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == "resource_missing":
                raise InvalidReference("Gateway does not know this reference")
            raise
        except stripe.APIError as exc:
            # 5xx on Stripe's side
            raise GatewayUnreachable(str(exc.user_message or exc))

    def create_session(self, booking_id, amount, currency, guest_contact) -> PaymentSession:
        self._configure()
        if not self.success_url or not self.cancel_url:
            raise GatewayNotConfigured("Payment success/cancel URLs not configured")

        session = self._call(
            stripe.checkout.Session.create,
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": currency.lower(),
                    "product_data": {"name": f"Room booking #{booking_id}"},
                    "unit_amount": to_minor_units(amount, currency),
                },
                "quantity": 1,
            }],
            customer_email=guest_contact or None,
            client_reference_id=str(booking_id),
            success_url=_success_url(self.success_url),
            cancel_url=_cancel_url(self.cancel_url, booking_id),
            metadata={"booking_id": str(booking_id)},
        )
        return PaymentSession(
            tx_ref=session["id"],
            checkout_url=session["url"],
            amount=Decimal(amount),
            currency=currency,
        )

    def verify(self, tx_ref) -> VerificationResult:
        self._configure()
        session = self._call(stripe.checkout.Session.retrieve, tx_ref)

        currency = session.get("currency") or current_app.config.get("PAYMENT_CURRENCY", "ETB")
        status = session.get("status")                  # open, complete, expired
        payment_status = session.get("payment_status")  # paid, unpaid, no_payment_required
        return VerificationResult(
            success=(payment_status == "paid"),
            amount_paid=from_minor_units(session.get("amount_total"), currency),
            raw_status=f"{status}/{payment_status}",
            final=status in ("complete", "expired"),
        )

    def refund(self, tx_ref, amount) -> str:
        self._configure()
        session = self._call(stripe.checkout.Session.retrieve, tx_ref)
        currency = session.get("currency") or current_app.config.get("PAYMENT_CURRENCY", "ETB")
        refund = self._call(
            stripe.Refund.create,
            payment_intent=session.get("payment_intent"),
            amount=to_minor_units(amount, currency),
            reason="requested_by_customer",
            metadata={"tx_ref": tx_ref},
        )
        return refund["id"]


def get_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
