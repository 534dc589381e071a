"""
Custom route decorators for access control.

- staff_required: ensures user is logged in AND has an active staff role.
- admin_required: ensures user is logged in AND has role "admin".
"""

from functools import wraps

from flask import abort
from flask_login import current_user, login_required

from app.models.user import User


def staff_required(f):
    """Require login + any staff role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if current_user.role not in User.ROLES or not current_user.is_active:
            abort(403)
        return f(*args, **kwargs)

    return decorated


def admin_required(f):
    """Require login + admin role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated
