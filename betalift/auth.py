"""
Bearer-token identity for the JSON API.

Clients send ``Authorization: Bearer <token>``. Tokens are signed user ids
(itsdangerous); credential checks and token issuance flows live outside this
service, which only verifies them and loads the user.
"""
import structlog
from flask import current_app, jsonify
from flask_login import LoginManager
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from betalift.models import User, db

logger = structlog.get_logger(__name__)

TOKEN_SALT = "betalift-auth"

login_manager = LoginManager()


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(user: User) -> str:
    """Sign a bearer token for ``user``."""
    return _serializer().dumps({"uid": user.id})


def load_user_from_token(token: str):
    """
    Resolve a bearer token to an active user.

    Returns:
        User, or None if the token is invalid, expired, or the user is gone/inactive
    """
    if not token:
        return None

    max_age = current_app.config.get("AUTH_TOKEN_MAX_AGE")
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        logger.info("auth_token_expired")
        return None
    except BadSignature:
        logger.warning("auth_token_invalid")
        return None

    user = db.session.get(User, payload.get("uid"))
    if not user or not user.is_active:
        return None
    return user


@login_manager.user_loader
def load_user(user_id):
    """Load user by ID for Flask-Login."""
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.request_loader
def load_user_from_request(request):
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return load_user_from_token(token.strip())


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"success": False, "error": "Authentication required"}), 401
