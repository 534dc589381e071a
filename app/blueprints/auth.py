"""Auth blueprint — /auth/*

JSON login/logout for staff (gate scanners, admin panel). Session cookie
auth via Flask-Login; the CSRF token for session writes is served from
/auth/csrf-token.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from app.extensions import limiter
from app.models.user import User

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

logger = logging.getLogger(__name__)


def user_json(user):
    return {
        "id": user.id,
        "email": user.email,
        "fullName": user.full_name,
        "role": user.role,
    }


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    """Email + password login. Returns the staff user."""
    data = request.get_json(silent=True) or request.form.to_dict()
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""
    remember = bool(data.get("remember"))

    if not email or not password:
        return jsonify(success=False, message="Email and password are required."), 400

    user = User.query.filter_by(email=email).first()

    if user is None or not check_password_hash(user.password_hash, password):
        logger.info(f"Failed login for {email}")
        return jsonify(success=False, message="Invalid email or password."), 401

    if not user.is_active:
        return jsonify(success=False, message="Your account has been deactivated."), 403

    login_user(user, remember=remember)
    logger.info(f"User {user.email} logged in")
    return jsonify(success=True, user=user_json(user))


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
def logout():
    """Log out. Safe to call when not logged in."""
    logout_user()
    return jsonify(success=True, message="You have been logged out.")


@auth_bp.route("/me")
@login_required
def me():
    return jsonify(success=True, user=user_json(current_user))


@auth_bp.route("/csrf-token")
def csrf_token():
    return jsonify(success=True, csrfToken=generate_csrf())
