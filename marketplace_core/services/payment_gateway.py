"""Payment gateway adapter — Stripe PaymentIntents with manual capture.

Funds are authorized when the booking is made (capture_method="manual")
and captured once at check-out. Capture is the one irreversible call in
settlement; callers pass an idempotency key so a replayed request can't
charge twice at Stripe's end either.

Every call may be slow or fail. Nothing here retries: retry is the
caller's decision.
"""

import logging
from dataclasses import dataclass

import stripe
from flask import current_app

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Wraps any failure talking to the payment processor."""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class CaptureResult:
    payment_intent_id: str
    amount_requested: int
    amount_received: int
    status: str


def _configure():
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    stripe.max_network_retries = current_app.config.get("STRIPE_MAX_NETWORK_RETRIES", 0)


def authorize(amount, currency, payment_method, customer=None, metadata=None):
    """Place a hold for ``amount`` minor units. Returns the PaymentIntent id."""
    _configure()
    params = {
        "amount": int(amount),
        "currency": currency.lower(),
        "payment_method": payment_method,
        "capture_method": "manual",
        "confirm": True,
        "metadata": metadata or {},
        # Off-session: the card was saved earlier in the booking flow.
        "off_session": True,
    }
    if customer:
        params["customer"] = customer
    try:
        intent = stripe.PaymentIntent.create(**params)
    except stripe.StripeError as e:
        logger.error(f"Payment authorization failed ({amount} {currency}): {e}")
        raise PaymentGatewayError(str(e), code=getattr(e, "code", None)) from e

    logger.info(f"Authorized {amount} {currency} as {intent['id']}")
    return intent["id"]


def capture(payment_intent_id, amount_to_capture, idempotency_key=None):
    """Capture ``amount_to_capture`` on a previously authorized intent.

    Returns a CaptureResult. ``amount_received`` is what Stripe reports it
    actually collected, which callers must prefer over what they asked for.
    Raises PaymentGatewayError on decline, network failure, or an intent
    that was already captured.
    """
    _configure()
    params = {"amount_to_capture": int(amount_to_capture)}
    if idempotency_key:
        params["idempotency_key"] = idempotency_key

    try:
        intent = stripe.PaymentIntent.capture(payment_intent_id, **params)
    except stripe.StripeError as e:
        raise PaymentGatewayError(str(e), code=getattr(e, "code", None)) from e

    amount_received = intent.get("amount_received")
    if amount_received is None:
        amount_received = int(amount_to_capture)
    return CaptureResult(
        payment_intent_id=payment_intent_id,
        amount_requested=int(amount_to_capture),
        amount_received=int(amount_received),
        status=intent.get("status", "succeeded"),
    )
