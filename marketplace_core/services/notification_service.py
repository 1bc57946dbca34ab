"""Notification fan-out — emails and pushes sent after state changes commit.

Everything here is best-effort. A failed email or push is logged and
swallowed: by the time these run, money has moved or the webhook has been
applied, and a notification problem must never undo or fail that.

Call only AFTER db.session.commit().
"""

import logging

from flask import current_app

from marketplace_core.services.email_service import send_email, send_email_sync
from marketplace_core.services.push_service import send_push

logger = logging.getLogger(__name__)


def format_amount(amount, currency):
    """Minor units -> display string, e.g. 5500000, "cop" -> "55,000.00 COP"."""
    if amount is None:
        return "—"
    return f"{amount / 100:,.2f} {(currency or '').upper()}"


def format_address(address):
    if not address:
        return "Not specified"
    if isinstance(address, dict) and address.get("formatted"):
        return str(address["formatted"])
    return str(address)


def _safe(label, fn, *args, **kwargs):
    """Run one notification step; log and swallow any failure."""
    try:
        fn(*args, **kwargs)
        return True
    except Exception as e:
        logger.error(f"Notification step failed ({label}): {e}", exc_info=True)
        return False


# ──────────────────────────────────────────────
# Booking settlement
# ──────────────────────────────────────────────

def notify_booking_completed(booking):
    """Tell both parties the service is done and paid.

    Customer: completion email + push. Professional: completion email +
    payment-received push. Each of the four sends is independent, and a
    failure while preparing them is logged like a failed send.
    """
    _safe("booking completion fan-out", _send_booking_completed, booking)


def _send_booking_completed(booking):
    customer = booking.customer
    professional = booking.professional
    customer_name = (customer.full_name if customer else None) or "Customer"
    professional_name = (professional.full_name if professional else None) or "Professional"
    service_name = booking.service_name or "Service"
    amount = format_amount(booking.amount_captured, booking.currency)

    context = {
        "customer_name": customer_name,
        "professional_name": professional_name,
        "service_name": service_name,
        "booking_id": booking.id,
        "duration": f"{booking.actual_duration_minutes} minutes",
        "address": format_address(booking.address),
        "amount": amount,
    }

    if customer and customer.email:
        _safe(
            "customer completion email",
            send_email,
            to=customer.email,
            subject=f"Your {service_name} is complete",
            template="emails/service_completed.html",
            context={**context, "for_professional": False},
        )
    if professional and professional.email:
        _safe(
            "professional completion email",
            send_email,
            to=professional.email,
            subject=f"Service completed — {amount} captured",
            template="emails/service_completed.html",
            context={**context, "for_professional": True},
        )

    _safe(
        "customer completion push",
        send_push,
        booking.customer_id,
        {
            "title": "Service completed",
            "body": f"{professional_name} has finished your {service_name}.",
            "data": {"type": "booking_completed", "booking_id": booking.id},
        },
    )
    _safe(
        "professional payment push",
        send_push,
        booking.professional_id,
        {
            "title": "Payment received",
            "body": f"{amount} for {service_name}.",
            "data": {"type": "payment_received", "booking_id": booking.id},
        },
    )


# ──────────────────────────────────────────────
# Background checks
# ──────────────────────────────────────────────

def notify_background_check_result(professional, check):
    """Email the professional the outcome of their background check."""
    if not professional or not professional.email:
        return
    _safe(
        "background check result email",
        send_email,
        to=professional.email,
        subject="Your background check is complete",
        template="emails/background_check_completed.html",
        context={
            "professional_name": professional.full_name or "there",
            "status": check.status,
            "recommendation": check.recommendation,
        },
    )


# ──────────────────────────────────────────────
# Operator alerts
# ──────────────────────────────────────────────

def alert_admins(subject, details):
    """Email ADMIN_ALERT_EMAILS. Blocks until sent; never raises."""
    recipients = current_app.config.get("ADMIN_ALERT_EMAILS") or []
    if not recipients:
        logger.warning(f"No ADMIN_ALERT_EMAILS configured, alert not sent: {subject}")
        return
    _safe(
        "admin alert",
        send_email_sync,
        to=recipients,
        subject=f"[ALERT] {subject}",
        template="emails/admin_alert.html",
        context={"subject": subject, "details": details},
    )
