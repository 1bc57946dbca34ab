"""Push notifications via the Expo push API.

The mobile apps register an Expo push token which is stored on
users.push_token. Users without a token are skipped silently.
"""

import logging

import requests
from flask import current_app

from marketplace_core.extensions import db
from marketplace_core.models.user import User

logger = logging.getLogger(__name__)


class PushDeliveryError(Exception):
    pass


def send_push(user_id, payload):
    """Send one push notification to a user.

    payload: dict with "title", "body" and optional "data".
    Returns True if a message was handed to Expo, False if the user has no
    push token. Raises PushDeliveryError if Expo rejects the request.
    """
    user = db.session.get(User, user_id)
    if not user or not user.push_token:
        logger.debug(f"No push token for user {user_id}, skipping push")
        return False

    message = {
        "to": user.push_token,
        "title": payload.get("title", ""),
        "body": payload.get("body", ""),
        "data": payload.get("data", {}),
        "sound": "default",
    }

    try:
        resp = requests.post(
            current_app.config["EXPO_PUSH_URL"],
            json=message,
            headers={"Accept": "application/json"},
            timeout=current_app.config.get("PUSH_TIMEOUT_SECONDS", 10),
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        raise PushDeliveryError(f"Expo push failed for user {user_id}: {e}") from e

    logger.info(f"Push sent to user {user_id}: {message['title']}")
    return True
