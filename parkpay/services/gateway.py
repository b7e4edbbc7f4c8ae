# -*- coding: utf-8 -*-
"""
Stripe gateway client.

Thin, explicitly constructed wrapper around the Stripe SDK. Responses are
returned as plain dicts (recursively) so services read them the same way on
every SDK release and the job queue can serialize them. Every call passes
the API key per request instead of mutating ``stripe.api_key``, so several
apps (or a test fake) can coexist in one process. The instance lives in
``app.extensions['stripe_gateway']``; services receive it as a constructor
argument.
"""

from typing import Any, Dict, List, Optional

import stripe
from flask import Flask, current_app

from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.gateway')

URL_PARAMS = ('success_url', 'cancel_url', 'return_url')


def as_dict(obj: Any) -> Optional[Dict[str, Any]]:
    """Plain-dict copy of a Stripe SDK response."""
    if obj is None:
        return None
    if isinstance(obj, stripe.StripeObject):
        return obj.to_dict()
    return dict(obj)


def is_url_rejection(error: Exception) -> bool:
    """True when Stripe rejected the request because of a redirect URL."""
    if not isinstance(error, stripe.InvalidRequestError):
        return False
    param = getattr(error, 'param', None) or ''
    if param in URL_PARAMS:
        return True
    message = (getattr(error, 'user_message', None) or str(error)).lower()
    return 'url' in message and ('invalid' in message or 'not a valid' in message)


class StripeGateway:
    """Outbound calls to Stripe used by checkout and webhook processing."""

    def __init__(self, api_key: str, currency: str = 'jpy'):
        self.api_key = api_key
        self.currency = currency

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    # --- customers ---

    def create_customer(self, email: str, user_id: str):
        return as_dict(stripe.Customer.create(
            api_key=self.api_key,
            email=email,
            metadata={'userId': user_id},
        ))

    def delete_customer(self, customer_id: str):
        return as_dict(stripe.Customer.delete(customer_id, api_key=self.api_key))

    def list_card_payment_methods(self, customer_id: str) -> List[Any]:
        result = as_dict(stripe.PaymentMethod.list(
            api_key=self.api_key,
            customer=customer_id,
            type='card',
        ))
        return list(result.get('data') or [])

    # --- catalog ---

    def create_recurring_price(self, name: str, unit_amount: int,
                               interval: str, interval_count: int):
        """Create a product and a recurring price for it; returns the price."""
        product = stripe.Product.create(api_key=self.api_key, name=name)
        return as_dict(stripe.Price.create(
            api_key=self.api_key,
            currency=self.currency,
            unit_amount=unit_amount,
            recurring={'interval': interval, 'interval_count': interval_count},
            product=product['id'],
        ))

    # --- checkout ---

    def create_checkout_session(self, params: Dict[str, Any]):
        return as_dict(stripe.checkout.Session.create(api_key=self.api_key, **params))

    def retrieve_checkout_session(self, session_id: str, expand_line_items: bool = True):
        expand = ['line_items', 'line_items.data.price.product'] if expand_line_items else []
        return as_dict(stripe.checkout.Session.retrieve(
            session_id,
            api_key=self.api_key,
            expand=expand,
        ))

    def retrieve_payment_intent(self, payment_intent_id: str):
        return as_dict(stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key))

    # --- subscriptions ---

    def latest_subscription(self, customer_id: str) -> Optional[Any]:
        """Most recent subscription of any status, with its payment method expanded."""
        result = as_dict(stripe.Subscription.list(
            api_key=self.api_key,
            customer=customer_id,
            limit=1,
            status='all',
            expand=['data.default_payment_method'],
        ))
        data = result.get('data') or []
        return data[0] if data else None

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool = True):
        return as_dict(stripe.Subscription.modify(
            subscription_id,
            api_key=self.api_key,
            cancel_at_period_end=cancel,
        ))

    def pause_collection(self, subscription_id: str, behavior: str = 'void'):
        """Stop invoicing the subscription until collection is resumed."""
        return as_dict(stripe.Subscription.modify(
            subscription_id,
            api_key=self.api_key,
            pause_collection={'behavior': behavior},
        ))


def init_gateway(app: Flask) -> StripeGateway:
    """Construct the gateway from app config and register it on the app."""
    gateway = StripeGateway(
        api_key=app.config.get('STRIPE_SECRET_KEY', ''),
        currency=app.config.get('CURRENCY', 'jpy'),
    )
    app.extensions['stripe_gateway'] = gateway
    if not gateway.configured:
        logger.warning("STRIPE_SECRET_KEY not configured; gateway calls will fail")
    return gateway


def get_gateway() -> StripeGateway:
    """Return the gateway registered on the current app."""
    return current_app.extensions['stripe_gateway']
