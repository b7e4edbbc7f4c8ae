# parkpay/services/queue.py
from __future__ import annotations

from typing import Any, Dict, Optional

import redis
from flask import Flask
from rq import Queue, Retry

# Backoff between attempts of a failed webhook job, in seconds
RETRY_INTERVALS = [10, 30, 60, 300, 900]

_connections: Dict[str, redis.Redis] = {}


def get_redis(url: str) -> redis.Redis:
    """One shared connection per URL for web and worker."""
    if url not in _connections:
        # decode_responses=False keeps RQ binary-safe for pickled jobs.
        _connections[url] = redis.from_url(url, decode_responses=False)
    return _connections[url]


def get_queue(app: Flask) -> Queue:
    """Queue name MUST match the worker start command (WEBHOOK_QUEUE_NAME)."""
    queue = app.extensions.get('webhook_queue')
    if queue is None:
        queue = Queue(
            app.config.get('WEBHOOK_QUEUE_NAME', 'webhooks'),
            connection=get_redis(app.config['REDIS_URL']),
        )
        app.extensions['webhook_queue'] = queue
    return queue


def enqueue_webhook(app: Flask, event: Dict[str, Any], queue: Optional[Queue] = None):
    """Enqueue processing of a verified event; failures past the retry limit land in the failed registry."""
    from parkpay.jobs.webhooks import process_webhook_event

    queue = queue or get_queue(app)
    max_retries = int(app.config.get('WEBHOOK_JOB_MAX_RETRIES', 5))
    return queue.enqueue(
        process_webhook_event,
        event,
        job_id=f"webhook-{event['id']}",
        retry=Retry(max=max_retries, interval=RETRY_INTERVALS[:max_retries] or [60]),
        description=f"{event.get('type')} {event['id']}",
    )
