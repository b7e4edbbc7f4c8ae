# -*- coding: utf-8 -*-
"""
Bearer-token authentication for the checkout endpoints.

Tokens are issued by the identity provider and carry the user id as the JWT
identity. Webhooks do not use this: their authentication is the Stripe
signature.
"""

from functools import wraps

from flask import g, jsonify
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from parkpay.database import db
from parkpay.models.user import User
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.security')


def _ensure_user_loaded():
    """
    Verify the bearer token and populate g.user.
    Returns (ok, response, status) where response is set on failure.
    """
    try:
        verify_jwt_in_request(locations=["headers"])
    except (JWTExtendedException, PyJWTError) as e:
        logger.log_security_event('auth_failed', severity='warning', reason=e.__class__.__name__)
        return False, jsonify({"error": "Unauthorized"}), 401

    identity = get_jwt_identity()
    if not identity:
        return False, jsonify({"error": "Unauthorized"}), 401

    user = db.session.get(User, str(identity))
    if user is None:
        return False, jsonify({"error": "User not found"}), 404

    g.user = user
    return True, None, None


def require_user(fn):
    """
    Decorator: ensures a valid bearer token for an existing user and sets g.user.
    Returns JSON errors (401/404), never HTML.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        ok, resp, code = _ensure_user_loaded()
        if not ok:
            return resp, code
        return fn(*args, **kwargs)
    return wrapper
