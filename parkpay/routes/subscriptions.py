# -*- coding: utf-8 -*-
"""Subscription management routes."""
from flask import Blueprint, g, jsonify, request
from marshmallow import ValidationError as SchemaValidationError

from parkpay.errors import ValidationError
from parkpay.infra.auth import require_user
from parkpay.infra.db import db
from parkpay.schemas import SubscriptionChangeRequestSchema, first_error_message
from parkpay.services.gateway import get_gateway
from parkpay.services.subscription_service import SubscriptionService

subscriptions_bp = Blueprint("subscriptions", __name__)


@subscriptions_bp.route("/subscription/cancel", methods=["POST"])
@require_user
def cancel_subscription():
    """Cancels the caller's subscription at the end of the current period."""
    payload = request.get_json(silent=True) or {}
    try:
        data = SubscriptionChangeRequestSchema().load(payload)
    except SchemaValidationError as e:
        raise ValidationError(first_error_message(e.messages))

    subscription_id = (data.get('subscription_id') or '').strip() or None
    service = SubscriptionService(get_gateway(), db.session)
    return jsonify(service.cancel_at_period_end(g.user, subscription_id)), 200


@subscriptions_bp.route("/subscription/pause", methods=["POST"])
@require_user
def pause_subscription():
    """Pauses invoicing of the caller's subscription."""
    payload = request.get_json(silent=True) or {}
    try:
        data = SubscriptionChangeRequestSchema().load(payload)
    except SchemaValidationError as e:
        raise ValidationError(first_error_message(e.messages))

    subscription_id = (data.get('subscription_id') or '').strip() or None
    service = SubscriptionService(get_gateway(), db.session)
    return jsonify(service.pause(g.user, subscription_id)), 200
