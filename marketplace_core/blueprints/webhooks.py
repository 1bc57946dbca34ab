"""Webhooks blueprint — /api/webhooks

Receives background-check provider webhooks (Checkr, Truora). CSRF-exempt.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from marketplace_core.errors import SignatureInvalid, ValidationError
from marketplace_core.extensions import limiter
from marketplace_core.services.background_check_service import BackgroundCheckEventProcessor

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

SIGNATURE_HEADERS = ("X-Checkr-Signature", "X-Truora-Signature")


def get_processor():
    """One processor per app, built from BACKGROUND_CHECK_PROVIDER."""
    processor = current_app.extensions.get("background_check_processor")
    if processor is None:
        processor = BackgroundCheckEventProcessor.from_config(current_app.config)
        current_app.extensions["background_check_processor"] = processor
    return processor


@webhooks_bp.route("/background-checks", methods=["POST"])
@limiter.limit("120 per minute")
def background_checks():
    """Receive and process background-check provider events.

    1. Get raw body (required for signature verification)
    2. Verify signature with the active provider's webhook secret
    3. Ingest (idempotent via the webhook_events ledger)
    4. Return 200 to acknowledge receipt, 500 so the provider retries

    CSRF is exempted for this blueprint in create_app().
    """
    payload = request.get_data()
    signature = next(
        (request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)),
        None,
    )

    if not signature:
        logger.warning("Background check webhook received without signature header")
        return jsonify({"error": "Missing signature"}), 400

    try:
        ack = get_processor().ingest(payload, signature, dict(request.headers))
    except (SignatureInvalid, ValidationError) as e:
        logger.warning(f"Background check webhook rejected: {e}")
        return jsonify({"error": e.public_message or e.message}), 400
    except Exception as e:
        logger.error(f"Background check webhook processing failed: {e}", exc_info=True)
        return jsonify({"error": "Webhook processing failed"}), 500

    return jsonify(ack), 200
