# -*- coding: utf-8 -*-

from unittest.mock import MagicMock, patch

from rq import Retry

from parkpay.database import db
from parkpay.jobs.webhooks import process_webhook_event, record_event
from parkpay.models import WebhookEvent
from parkpay.services.queue import RETRY_INTERVALS, enqueue_webhook


def test_process_webhook_event_runs_in_worker_app(app):
    event = {"id": "evt_job_1", "type": "product.created", "data": {"object": {}}}
    with patch("parkpay.jobs.webhooks._get_app", return_value=app):
        result = process_webhook_event(event)

    assert result == {"event_id": "evt_job_1", "outcome": "ignored"}
    record = WebhookEvent.query.filter_by(event_id="evt_job_1").one()
    assert record.status == "processed"
    assert record.attempts == 1


def test_processed_event_is_not_dispatched_again(app):
    event = {"id": "evt_job_2", "type": "product.created", "data": {"object": {}}}
    with patch("parkpay.jobs.webhooks._get_app", return_value=app):
        process_webhook_event(event)
        result = process_webhook_event(event)

    assert result["outcome"] == "duplicate"


def test_record_event_is_get_or_create(app):
    event = {"id": "evt_job_3", "type": "invoice.paid"}
    first = record_event(event)
    second = record_event(event)

    assert first.id == second.id
    assert WebhookEvent.query.count() == 1


def test_enqueue_webhook_sets_job_id_and_retry(app):
    queue = MagicMock()
    event = {"id": "evt_job_4", "type": "checkout.session.completed"}

    enqueue_webhook(app, event, queue=queue)

    args, kwargs = queue.enqueue.call_args
    assert args[0] is process_webhook_event
    assert args[1] == event
    assert kwargs["job_id"] == "webhook-evt_job_4"
    assert isinstance(kwargs["retry"], Retry)
    assert kwargs["retry"].max == app.config["WEBHOOK_JOB_MAX_RETRIES"]
    assert kwargs["retry"].intervals == RETRY_INTERVALS[:kwargs["retry"].max]


def test_queued_event_is_processed_by_worker(app):
    event = {"id": "evt_job_5", "type": "product.created", "data": {"object": {}}}
    record_event(event).status = "queued"
    db.session.commit()

    with patch("parkpay.jobs.webhooks._get_app", return_value=app):
        process_webhook_event(event)

    db.session.expire_all()
    assert WebhookEvent.query.filter_by(event_id="evt_job_5").one().status == "processed"
