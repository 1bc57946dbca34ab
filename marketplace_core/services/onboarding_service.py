"""Professional onboarding state machine.

    not_started -> application_in_review -> approved | rejected

approved implies account_status "active"; rejected implies "suspended".
Nothing automatic leaves approved or rejected: such attempts are logged
and ignored. Reversals are an admin action.

Functions flush but do NOT commit — the caller commits.
"""

import logging

from marketplace_core.extensions import db
from marketplace_core.models.audit import AuditEvent

logger = logging.getLogger(__name__)

AUTO_APPROVE = "auto_approve"
FLAG_FOR_REVIEW = "flag_for_review"
REJECT = "reject"

TERMINAL_STATES = ("approved", "rejected")

_ACTION_TARGETS = {
    AUTO_APPROVE: "approved",
    FLAG_FOR_REVIEW: "application_in_review",
    REJECT: "rejected",
}

_ACCOUNT_STATUS_FOR = {
    "approved": "active",
    "rejected": "suspended",
}


def next_onboarding_state(current, action):
    """Pure transition function. Returns the resulting onboarding status.

    Terminal states return unchanged. Unknown actions raise ValueError.
    """
    if action not in _ACTION_TARGETS:
        raise ValueError(
            f"Invalid onboarding action '{action}'. "
            f"Must be one of: {', '.join(_ACTION_TARGETS)}"
        )
    if current in TERMINAL_STATES:
        return current
    return _ACTION_TARGETS[action]


# ──────────────────────────────────────────────
# Decision from a completed background check
# ──────────────────────────────────────────────

_GUARDS = (
    (AUTO_APPROVE, lambda status, rec: status == "clear" and rec == "approved"),
    (FLAG_FOR_REVIEW, lambda status, rec: status == "consider" or rec == "review_required"),
    (REJECT, lambda status, rec: status == "suspended" or rec == "rejected"),
)


def decide_onboarding_action(status, recommendation):
    """Pick the onboarding action for a background check result.

    Each guard is evaluated independently. No match returns None. More than
    one match is an inconsistent provider result: it is logged at ERROR and
    the last matching guard wins.
    """
    matched = [action for action, guard in _GUARDS if guard(status, recommendation)]
    if not matched:
        return None
    if len(matched) > 1:
        logger.error(
            f"Background check result matches several onboarding actions "
            f"(status={status} recommendation={recommendation}): {matched}; "
            f"applying {matched[-1]}"
        )
    return matched[-1]


# ──────────────────────────────────────────────
# Applying actions
# ──────────────────────────────────────────────

def _apply(profile, action, reason=None):
    current = profile.onboarding_status
    target = next_onboarding_state(current, action)
    if target == current:
        if current in TERMINAL_STATES:
            logger.warning(
                f"Ignoring {action} for professional {profile.user_id}: "
                f"onboarding already {current}"
            )
        return False

    profile.onboarding_status = target
    if target in _ACCOUNT_STATUS_FOR:
        profile.account_status = _ACCOUNT_STATUS_FOR[target]
    db.session.flush()

    audit = AuditEvent(
        actor_user_id=None,
        action=f"onboarding.{target}",
        metadata_={
            "professional_id": profile.user_id,
            "old_status": current,
            "new_status": target,
            "reason": reason,
        },
    )
    db.session.add(audit)
    db.session.flush()

    logger.info(f"Onboarding for professional {profile.user_id}: {current} -> {target}")
    return True


def auto_approve(profile, reason=None):
    """Approve only if documents are verified and the interview is done.

    The background check is necessary but not sufficient. Returns True if
    the profile was approved.
    """
    if not (profile.documents_verified and profile.interview_completed):
        logger.info(
            f"Background check clear for professional {profile.user_id} but onboarding "
            f"incomplete (documents_verified={profile.documents_verified}, "
            f"interview_completed={profile.interview_completed}); not approving"
        )
        return False
    return _apply(profile, AUTO_APPROVE, reason)


def flag_for_review(profile, reason=None):
    return _apply(profile, FLAG_FOR_REVIEW, reason)


def reject(profile, reason=None):
    return _apply(profile, REJECT, reason)


_ACTIONS = {
    AUTO_APPROVE: auto_approve,
    FLAG_FOR_REVIEW: flag_for_review,
    REJECT: reject,
}


def apply_background_check_result(profile, status, recommendation):
    """Run the decided action, if any. Returns the action name or None."""
    action = decide_onboarding_action(status, recommendation)
    if action is None:
        logger.info(
            f"No onboarding action for professional {profile.user_id} "
            f"(status={status} recommendation={recommendation})"
        )
        return None
    _ACTIONS[action](profile, reason=f"background check {status}/{recommendation}")
    return action
