"""Webhook event model (idempotency table).

Every Stripe event is recorded by its event id. Redeliveries of an event that
was already processed are acknowledged without running the handlers again.

Status moves received -> queued (handed to RQ) -> processed | failed; inline
processing goes straight from received to processed or failed.
"""
import datetime as dt
from parkpay.database import db


class WebhookEvent(db.Model):
    __tablename__ = 'webhook_events'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), unique=True, nullable=False)
    event_type = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='received')
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    received_at = db.Column(db.DateTime, nullable=False, default=dt.datetime.utcnow)
    processed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f"<WebhookEvent {self.event_id} ({self.event_type}) {self.status}>"
