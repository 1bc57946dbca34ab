"""
Custom route decorators for access control.

- role_required: ensures user is logged in AND has one of the given roles.
"""

from functools import wraps

from flask import abort
from flask_login import current_user, login_required


def role_required(*roles):
    """Require login + one of ``roles`` (admins always pass)."""

    def decorator(f):
        @wraps(f)
        @login_required
        def decorated(*args, **kwargs):
            if not (current_user.is_admin or current_user.role in roles):
                abort(403)
            return f(*args, **kwargs)

        return decorated

    return decorator
