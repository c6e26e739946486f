"""Authentication routes."""
from __future__ import annotations

from typing import Any

from flask import current_app
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from app.models import User
from app.utils.helpers import json_response, request_payload

from . import auth_bp


@auth_bp.route("/login", methods=["POST"])
def login() -> Any:
    """Authenticate a user using email/password."""
    payload = request_payload()
    email = (payload.get("email") or "").lower()
    password = payload.get("password")

    if not email or not password:
        return json_response({"error": "Email and password are required."}, status=400)

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        current_app.logger.info("Failed login attempt for %s", email)
        return json_response({"error": "Invalid credentials."}, status=401)

    if not user.is_active:
        return json_response({"error": "User account is inactive."}, status=403)

    login_user(user, remember=bool(payload.get("remember", False)))
    current_app.logger.info("User %s logged in", user.id)
    return json_response({"message": "Logged in successfully.", "user": user.to_dict()})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout() -> Any:
    user_id = current_user.id
    logout_user()
    current_app.logger.info("User %s logged out", user_id)
    return json_response({"message": "Logged out successfully."})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me() -> Any:
    return json_response({"user": current_user.to_dict()})


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token() -> Any:
    """Token to send back in the ``X-CSRFToken`` header."""
    return json_response({"csrf_token": generate_csrf()})
