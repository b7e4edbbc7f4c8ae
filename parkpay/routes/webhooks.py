# -*- coding: utf-8 -*-
"""
Stripe webhook endpoint.

The signature is the authentication. Verified events are recorded by id and
handed to the background queue (or processed in-request when
WEBHOOK_PROCESSING=inline). Errors are returned as plain text.
"""
from flask import Blueprint, Response, current_app, jsonify, request
from redis.exceptions import RedisError

from parkpay.errors import SignatureError
from parkpay.infra.db import db
from parkpay.infra.log import get_logger
from parkpay.jobs.webhooks import handle_event, record_event
from parkpay.services.metrics import record_webhook
from parkpay.services.queue import enqueue_webhook
from parkpay.services.structured_logging import log_signature_failure
from parkpay.services.webhook_verifier import WebhookVerifier

webhooks_bp = Blueprint('webhooks', __name__)

logger = get_logger('parkpay.webhooks')


def _plain(message: str, status: int) -> Response:
    return Response(message, status=status, mimetype='text/plain')


@webhooks_bp.route('/webhook', methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE'])
def stripe_webhook():
    """
    Receive a Stripe event.

    Returns {"received": true} once the event is verified and either queued
    or processed; 400 on a bad signature, 500 when processing cannot be
    handed off so Stripe redelivers.
    """
    if request.method != 'POST':
        return _plain('Method not allowed', 405)

    secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        return _plain('Webhook not configured', 500)

    try:
        event = WebhookVerifier(secret).verify(request.get_data(), request.headers.get('Stripe-Signature'))
    except SignatureError as e:
        log_signature_failure(e.message)
        record_webhook('unverified', 'rejected')
        return _plain(e.message, 400)

    event_id = event.get('id')
    event_type = event.get('type') or ''
    if not event_id:
        return _plain('Invalid payload: missing event id', 400)
    logger.log_webhook_event(event_id, event_type, 'verified')

    app = current_app._get_current_object()
    if app.config.get('WEBHOOK_PROCESSING') == 'inline':
        try:
            handle_event(app, event)
        except Exception:
            # Already logged and recorded on the event row
            return _plain('Webhook processing failed', 500)
        return jsonify({'received': True}), 200

    record = record_event(event)
    if record.status == 'processed':
        logger.log_webhook_event(event_id, event_type, 'duplicate')
        return jsonify({'received': True}), 200

    try:
        enqueue_webhook(app, event)
    except RedisError as e:
        logger.error(f"Failed to queue webhook event {event_id}: {e}", event_id=event_id)
        return _plain('Failed to queue webhook event', 500)

    record.status = 'queued'
    db.session.commit()
    logger.log_webhook_event(event_id, event_type, 'queued')
    return jsonify({'received': True}), 200
