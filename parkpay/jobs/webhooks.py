# parkpay/jobs/webhooks.py
from __future__ import annotations

import datetime as dt
from typing import Any, Dict

from rq import get_current_job
from sqlalchemy.exc import IntegrityError

from parkpay.infra.db import db
from parkpay.models.webhook_event import WebhookEvent
from parkpay.services.event_router import build_event_router
from parkpay.services.metrics import record_webhook
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.webhooks')

# The worker builds the Flask app lazily, once per process.
_APP_SINGLETON = None


def _get_app():
    """Create (once) and return the Flask app for DB work inside a job."""
    global _APP_SINGLETON
    if _APP_SINGLETON is None:
        from parkpay.factory import create_app  # import here to avoid circulars
        _APP_SINGLETON = create_app()
    return _APP_SINGLETON


def _update_job_meta(**kw: Any) -> None:
    job = get_current_job()
    if job:
        job.meta = {**(job.meta or {}), **kw}
        job.save_meta()


def record_event(event: Dict[str, Any]) -> WebhookEvent:
    """Get or create the idempotency row for an event."""
    record = WebhookEvent.query.filter_by(event_id=event['id']).first()
    if record is not None:
        return record
    record = WebhookEvent(event_id=event['id'], event_type=event.get('type') or '', status='received')
    try:
        db.session.add(record)
        db.session.commit()
    except IntegrityError:
        # Concurrent delivery of the same event
        db.session.rollback()
        record = WebhookEvent.query.filter_by(event_id=event['id']).one()
    return record


def handle_event(app, event: Dict[str, Any]) -> str:
    """
    Route one verified event and record the outcome on its WebhookEvent row.
    Must run inside an app context. Re-raises handler failures so the caller
    (RQ retry or the inline webhook response) can trigger redelivery.
    """
    event_id = event['id']
    event_type = event.get('type') or ''
    record = record_event(event)
    if record.status == 'processed':
        logger.log_webhook_event(event_id, event_type, 'duplicate')
        record_webhook(event_type, 'duplicate')
        return 'duplicate'

    record.attempts = (record.attempts or 0) + 1
    db.session.commit()

    try:
        outcome = build_event_router(app).dispatch(event)
    except Exception as e:
        db.session.rollback()
        record = WebhookEvent.query.filter_by(event_id=event_id).one()
        record.status = 'failed'
        record.last_error = f"{e.__class__.__name__}: {e}"[:2000]
        db.session.commit()
        logger.exception(f"Webhook event {event_id} failed", event_id=event_id,
                         event_type=event_type, attempts=record.attempts)
        record_webhook(event_type, 'failed')
        raise

    record.status = 'processed'
    record.processed_at = dt.datetime.utcnow()
    record.last_error = None
    db.session.commit()

    logger.log_webhook_event(event_id, event_type, outcome)
    record_webhook(event_type, outcome)
    return outcome


def process_webhook_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """RQ entry point for a verified Stripe event."""
    app = _get_app()
    _update_job_meta(status='running', event_id=event.get('id'))
    with app.app_context():
        outcome = handle_event(app, event)
    _update_job_meta(status='done', outcome=outcome)
    return {'event_id': event.get('id'), 'outcome': outcome}
