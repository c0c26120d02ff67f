"""Token helpers shared by the route modules."""
from __future__ import annotations

from flask import current_app, jsonify, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .extensions import db
from .models import User


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")


def build_token(payload: dict[str, object]) -> str:
    return _serializer().dumps(payload)


def get_jwt_identity() -> int | None:
    """Extract and validate user_id from the Authorization header token.

    Returns the user_id if the token is valid, None if missing, expired or
    tampered with.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]  # Remove "Bearer " prefix

    try:
        payload = _serializer().loads(token, max_age=current_app.config["TOKEN_MAX_AGE"])
    except SignatureExpired:
        current_app.logger.info("Rejected expired auth token")
        return None
    except BadSignature:
        return None

    user_id = payload.get("user_id") if isinstance(payload, dict) else None
    return int(user_id) if user_id is not None else None


def current_user() -> User | None:
    """Load the active user behind the request token."""
    user_id = get_jwt_identity()
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def require_user():
    """Return ``(user, None)`` or ``(None, 401 response)``."""
    user = current_user()
    if user is None:
        return None, (
            jsonify({"error": "unauthorized", "message": "Authentication required. Please log in to continue."}),
            401,
        )
    return user, None


def forbidden(message: str = "You do not have permission to perform this action"):
    return jsonify({"error": "forbidden", "message": message}), 403
