# -*- coding: utf-8 -*-
"""
Checkout routes.

POST /checkout builds a Stripe Checkout session for the signed-in user.
POST /checkout/session-details returns a summary of one of their sessions.
"""
from flask import Blueprint, current_app, g, jsonify, request
from marshmallow import ValidationError as SchemaValidationError

from parkpay.errors import ConflictError, PaymentError, ValidationError
from parkpay.infra.auth import require_user
from parkpay.infra.db import db
from parkpay.schemas import CheckoutRequestSchema, SessionDetailsRequestSchema, first_error_message
from parkpay.services.checkout_service import CheckoutService
from parkpay.services.gateway import get_gateway
from parkpay.services.metrics import record_checkout

checkout_bp = Blueprint("checkout", __name__)


def _json():
    """Safely parse JSON body or return empty dict."""
    return (request.get_json(silent=True) or {}) if request.data else {}


def _load(schema, payload):
    try:
        return schema.load(payload)
    except SchemaValidationError as e:
        raise ValidationError(first_error_message(e.messages))


def _service() -> CheckoutService:
    return CheckoutService(get_gateway(), db.session, current_app.config)


def _outcome(error: PaymentError) -> str:
    if isinstance(error, ConflictError):
        return 'conflict'
    return 'failed' if error.status_code >= 500 else 'rejected'


@checkout_bp.route("/checkout", methods=["POST"])
@require_user
def create_checkout():
    """Creates a Stripe Checkout session for a purchase or subscription."""
    payload = _json()
    mode = payload.get('mode') if isinstance(payload, dict) else None
    try:
        data = _load(CheckoutRequestSchema(), payload)
        result = _service().create_session(g.user, data)
    except PaymentError as e:
        record_checkout(str(mode or 'unknown'), _outcome(e))
        raise

    record_checkout(data['mode'], 'created')
    return jsonify(result.to_dict()), 200


@checkout_bp.route("/checkout/session-details", methods=["POST"])
@require_user
def session_details():
    """Summary of a completed or open checkout session owned by the caller."""
    data = _load(SessionDetailsRequestSchema(), _json())
    return jsonify(_service().session_details(g.user, data['session_id'])), 200
