"""Background-check provider clients — Checkr (US) and Truora (LatAm).

Each client does two things for the event processor:
- verify_webhook(): check the HMAC-SHA256 signature over the raw body and
  normalize the payload into a NormalizedEvent
- get_check_status(): fetch the authoritative result for a check

Provider statuses are mapped onto one vocabulary:
pending | clear | consider | suspended.
Recommendations: approved | review_required | rejected.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

import requests

from marketplace_core.errors import ProviderError, SignatureInvalid, ValidationError

logger = logging.getLogger(__name__)

EVENT_TYPES = ("check.created", "check.completed", "check.updated", "check.failed")


@dataclass
class NormalizedEvent:
    type: str
    provider_check_id: str
    provider: str
    status: str
    data: dict = field(default_factory=dict)


@dataclass
class CheckResult:
    provider_check_id: str
    status: str
    recommendation: str
    raw_data: dict
    completed_at: datetime | None = None


def _parse_timestamp(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable provider timestamp: {value!r}")
        return None


class BackgroundCheckProvider:
    """Shared signature check and HTTP plumbing. Subclasses map payloads."""

    name = None
    status_map = {}
    type_map = {}

    def __init__(self, api_key, webhook_secret, base_url, timeout=30):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    # --- Webhooks ---

    def verify_signature(self, raw_body, signature):
        if not signature or not self.webhook_secret:
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        expected = hmac.new(
            self.webhook_secret.encode("utf-8"), raw_body, hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    def verify_webhook(self, raw_body, signature, headers=None):
        """Return a NormalizedEvent, or raise SignatureInvalid."""
        if not self.verify_signature(raw_body, signature):
            raise SignatureInvalid(f"{self.name} webhook signature verification failed")
        try:
            data = json.loads(raw_body)
        except ValueError as e:
            raise ValidationError(f"{self.name} webhook body is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"{self.name} webhook body is not a JSON object")
        event = self.normalize_event(data)
        if not event.provider_check_id:
            raise ValidationError(f"{self.name} webhook has no check id")
        return event

    def map_status(self, provider_status):
        return self.status_map.get(str(provider_status or "").lower(), "pending")

    def map_event_type(self, provider_type):
        # Unrecognized provider event names are treated as updates.
        return self.type_map.get(provider_type, "check.updated")

    def normalize_event(self, data):
        raise NotImplementedError

    # --- Status fetch ---

    def _get(self, path):
        url = f"{self.base_url}{path}"
        try:
            resp = requests.get(url, timeout=self.timeout, **self._auth())
            resp.raise_for_status()
            return resp.json()
        except requests.exceptions.Timeout as e:
            raise ProviderError(f"{self.name} API timed out: {url}") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ProviderError(f"{self.name} API error for {url}: {e}") from e

    def _auth(self):
        raise NotImplementedError

    def get_check_status(self, provider_check_id):
        """Authoritative result for a check. Raises ProviderError."""
        raise NotImplementedError


# ──────────────────────────────────────────────
# Checkr
# ──────────────────────────────────────────────

class CheckrClient(BackgroundCheckProvider):
    name = "checkr"
    status_map = {
        "pending": "pending",
        "complete": "clear",
        "consider": "consider",
        "suspended": "suspended",
        "canceled": "suspended",
    }
    type_map = {
        "report.created": "check.created",
        "report.completed": "check.completed",
        "report.updated": "check.updated",
        "report.failed": "check.failed",
    }

    def _auth(self):
        # API key as the basic-auth username, empty password.
        return {"auth": (self.api_key or "", "")}

    def normalize_event(self, data):
        obj = (data.get("data") or {}).get("object") or data.get("object") or {}
        return NormalizedEvent(
            type=self.map_event_type(data.get("type")),
            provider_check_id=obj.get("id") or data.get("id"),
            provider=self.name,
            status=self.map_status(obj.get("status") or data.get("status")),
            data=data,
        )

    def get_check_status(self, provider_check_id):
        report = self._get(f"/v1/reports/{provider_check_id}")
        status = self.map_status(report.get("status"))
        if status == "clear":
            recommendation = "approved"
        elif status == "suspended":
            recommendation = "rejected"
        else:
            recommendation = "review_required"
        return CheckResult(
            provider_check_id=report.get("id") or provider_check_id,
            status=status,
            recommendation=recommendation,
            raw_data=report,
            completed_at=_parse_timestamp(report.get("completed_at")),
        )


# ──────────────────────────────────────────────
# Truora
# ──────────────────────────────────────────────

class TruoraClient(BackgroundCheckProvider):
    name = "truora"
    status_map = {
        "pending": "pending",
        "success": "clear",
        "failure": "suspended",
        "manual_review": "consider",
        "expired": "suspended",
    }
    type_map = {t: t for t in EVENT_TYPES}

    def _auth(self):
        return {"headers": {"Truora-API-Key": self.api_key or ""}}

    def normalize_event(self, data):
        obj = data.get("object") or {}
        return NormalizedEvent(
            type=self.map_event_type(data.get("event_type") or data.get("type")),
            provider_check_id=data.get("check_id") or obj.get("check_id"),
            provider=self.name,
            status=self.map_status(data.get("status") or obj.get("status")),
            data=data,
        )

    @staticmethod
    def _recommendation(check):
        raw_status = str(check.get("status") or "").lower()
        if raw_status == "success":
            sub_checks = (check.get("checks") or {}).values()
            if all((c or {}).get("summary") == "pass" for c in sub_checks):
                return "approved"
            return "review_required"
        if raw_status == "failure":
            return "rejected"
        return "review_required"

    def get_check_status(self, provider_check_id):
        check = self._get(f"/v1/checks/{provider_check_id}")
        status = self.map_status(check.get("status"))
        completed_at = None
        if status != "pending":
            completed_at = _parse_timestamp(check.get("update_date") or check.get("creation_date"))
        return CheckResult(
            provider_check_id=check.get("check_id") or provider_check_id,
            status=status,
            recommendation=self._recommendation(check),
            raw_data=check,
            completed_at=completed_at,
        )


PROVIDERS = {
    "checkr": CheckrClient,
    "truora": TruoraClient,
}


def build_provider(name, config):
    """Instantiate the configured provider from a Flask config mapping."""
    try:
        cls = PROVIDERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown background check provider '{name}'. "
            f"Must be one of: {', '.join(PROVIDERS)}"
        ) from None
    prefix = name.upper()
    return cls(
        api_key=config.get(f"{prefix}_API_KEY"),
        webhook_secret=config.get(f"{prefix}_WEBHOOK_SECRET"),
        base_url=config.get(f"{prefix}_BASE_URL") or "",
        timeout=config.get("BACKGROUND_CHECK_TIMEOUT_SECONDS", 30),
    )
