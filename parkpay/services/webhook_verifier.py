# -*- coding: utf-8 -*-
"""Stripe webhook signature verification."""

import json
from typing import Any, Dict, Optional

import stripe

from parkpay.errors import SignatureError


class WebhookVerifier:
    """Checks the Stripe-Signature header against the raw request body."""

    def __init__(self, secret: str, tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.secret = secret
        self.tolerance = tolerance

    def verify(self, raw_body: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """Return the decoded event, or raise SignatureError."""
        if not signature_header:
            raise SignatureError("No signature found")

        try:
            payload = raw_body.decode('utf-8') if isinstance(raw_body, bytes) else raw_body
            stripe.Webhook.construct_event(payload, signature_header, self.secret, self.tolerance)
        except ValueError as e:
            raise SignatureError(f"Invalid payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise SignatureError(f"Webhook signature verification failed: {e}") from e

        # Plain dicts are what the job queue serializes and the router reads.
        return json.loads(payload)
