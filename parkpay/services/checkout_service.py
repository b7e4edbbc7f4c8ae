# -*- coding: utf-8 -*-
"""
Checkout Session Builder.

Assembles a Stripe Checkout session from a validated request: resolves the
customer, guards against a second live subscription, prices the purchase,
applies points and submits the session. Apart from the lazy customer
mapping, nothing here writes: orders and subscription state come only from
confirmed webhook events.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse

import stripe
from sqlalchemy.orm import Session

from parkpay.errors import ConflictError, GatewayError, NotFoundError, ValidationError
from parkpay.models.catalog import PaymentCard
from parkpay.models.subscription import Subscription
from parkpay.services.customer_mapper import CustomerIdentityMapper
from parkpay.services.gateway import StripeGateway, is_url_rejection
from parkpay.services.loyalty import LoyaltyLedger
from parkpay.services.pricing import LineItem, PricingEngine, PricingResult
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.checkout')

SESSION_ID_PLACEHOLDER = '{CHECKOUT_SESSION_ID}'

# Stripe metadata only accepts strings, max 500 characters per value
METADATA_VALUE_LIMIT = 500
METADATA_KEYS = frozenset({
    'user_id', 'checkout_kind', 'notes', 'points_use', 'points_discount',
    'subtotal', 'shipping_fee', 'items', 'custom_name', 'participant_count',
    'facility_id', 'reservation_date', 'default_payment_method',
    'sub_product_id', 'sub_option_id', 'sub_interval', 'sub_unit_price',
    'shipping_name', 'shipping_postal_code', 'shipping_address', 'shipping_phone',
})

SAVED_CARD_REDISPLAY = {'allow_redisplay_filters': ['always', 'limited', 'unspecified']}


@dataclass
class CheckoutResult:
    session_id: str
    url: str
    points_use: int

    def to_dict(self) -> Dict[str, Any]:
        return {'sessionId': self.session_id, 'url': self.url, 'points_use': self.points_use}


def build_metadata(values: Mapping[str, Any]) -> Dict[str, str]:
    """Keep allow-listed keys only, stringified and truncated."""
    metadata = {}
    for key, value in values.items():
        if key not in METADATA_KEYS or value is None:
            continue
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        metadata[key] = str(value)[:METADATA_VALUE_LIMIT]
    return metadata


def encode_items_snapshot(snapshot: List[Dict[str, Any]]) -> Optional[str]:
    """JSON item snapshot that fits one metadata value, or None."""
    if not snapshot:
        return None
    full = json.dumps(snapshot, ensure_ascii=False, separators=(',', ':'))
    if len(full) <= METADATA_VALUE_LIMIT:
        return full
    compact = json.dumps(
        [{'product_id': i['product_id'], 'quantity': i['quantity'], 'unit_price': i['unit_price']}
         for i in snapshot],
        separators=(',', ':'),
    )
    if len(compact) <= METADATA_VALUE_LIMIT:
        return compact
    logger.warning("Item snapshot too large for metadata; order will use gateway line items",
                   item_count=len(snapshot))
    return None


def rebuild_redirect_url(url: str, base_url: str, with_session_placeholder: bool = False) -> str:
    """Move a caller-supplied redirect onto the trusted base, keeping path and query."""
    parsed = urlparse(url)
    path = parsed.path or '/'
    if not path.startswith('/'):
        path = '/' + path
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != 'session_id']
    if with_session_placeholder:
        query.append(('session_id', SESSION_ID_PLACEHOLDER))
    rebuilt = f"{base_url.rstrip('/')}{path}"
    if query:
        rebuilt += '?' + urlencode(query, safe='{}')
    return rebuilt


def subscription_interval(interval_months: int):
    """Map a month count onto Stripe's recurring interval granularity."""
    if interval_months == 12:
        return 'year', 1
    return 'month', interval_months


class CheckoutService:
    """Builds and submits checkout sessions for an authenticated user."""

    def __init__(self, gateway: StripeGateway, session: Session, config: Mapping[str, Any]):
        self.gateway = gateway
        self.db = session
        self.config = config
        self.mapper = CustomerIdentityMapper(gateway, session)
        self.pricing = PricingEngine(session, config)
        self.ledger = LoyaltyLedger(session, config.get('POINTS_EARN_RATE', '0.10'))

    def create_session(self, user, data: Dict[str, Any]) -> CheckoutResult:
        mode = data['mode']
        customer_id = self.mapper.get_or_create(user.id, user.email)
        subscription = self.mapper.ensure_subscription_row(customer_id)

        if mode == 'subscription':
            self.guard_subscription_collision(subscription)
            pricing = self.price_subscription(data)
            points_use = 0
        else:
            pricing = self.price_payment(user, data, subscription)
            points_use = data.get('points_use') or 0
            if points_use > 0:
                self.check_points_balance(user.id, points_use)
                self.pricing.apply_points(pricing, points_use)
            self.pricing.ensure_chargeable(pricing)

        params = self.build_params(user, customer_id, data, pricing)
        session = self.submit(params)

        logger.info(f"Created checkout session {session['id']} for customer {customer_id}",
                    mode=mode, kind=pricing.kind, customer_id=customer_id,
                    points_discount=pricing.discount)
        return CheckoutResult(session_id=session['id'], url=session.get('url'), points_use=points_use)

    # --- guards ---

    def guard_subscription_collision(self, subscription: Optional[Subscription]):
        """Advisory check: a concurrent checkout can still slip between this read and completion."""
        if subscription is not None and subscription.blocks_new_subscription:
            logger.info("Refused second subscription checkout",
                        customer_id=subscription.customer_id, status=subscription.status)
            raise ConflictError(
                "You already have a subscription in progress. "
                "Manage or cancel it before starting a new one."
            )

    def check_points_balance(self, user_id: str, points_use: int):
        balance = self.ledger.balance(user_id)
        if points_use > balance:
            raise ValidationError(f"Not enough points (balance: {balance})")

    # --- pricing ---

    def price_payment(self, user, data: Dict[str, Any], subscription: Optional[Subscription]) -> PricingResult:
        if data.get('custom_amount') is not None:
            return self.pricing.price_custom(data.get('custom_name'), data['custom_amount'])
        if data.get('cart_items'):
            is_subscriber = bool(subscription and subscription.is_member)
            return self.pricing.price_cart(user.id, data['cart_items'], is_subscriber)
        if data.get('reservation_data') is not None:
            return self.pricing.price_reservation(data['reservation_data'], data.get('price_id'))
        return self.pricing.price_static(data.get('price_id') or self.pricing.default_day_pass_price_id)

    def price_subscription(self, data: Dict[str, Any]) -> PricingResult:
        if data.get('price_id'):
            return self.pricing.price_static(data['price_id'])

        terms = data.get('subscription') or {}
        if not terms.get('unit_price'):
            raise ValidationError('price_id or subscription details are required for subscription')

        interval, interval_count = subscription_interval(terms['interval_months'])
        try:
            price = self.gateway.create_recurring_price(
                name=terms['name'],
                unit_amount=terms['unit_price'],
                interval=interval,
                interval_count=interval_count,
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create recurring price: {e}")
            raise GatewayError("Failed to create subscription price") from e

        return PricingResult.build('subscription', [LineItem(name=terms['name'], price_id=price['id'])])

    # --- params ---

    def build_params(self, user, customer_id: str, data: Dict[str, Any], pricing: PricingResult) -> Dict[str, Any]:
        mode = data['mode']
        base_url = self.config['PUBLIC_SITE_URL']
        currency = self.config.get('CURRENCY', 'jpy')

        params: Dict[str, Any] = {
            'customer': customer_id,
            'mode': mode,
            'client_reference_id': str(user.id),
            'success_url': rebuild_redirect_url(data['success_url'], base_url, with_session_placeholder=True),
            'cancel_url': rebuild_redirect_url(data['cancel_url'], base_url),
            'line_items': [item.to_stripe(currency) for item in pricing.line_items],
        }

        payment_method = data.get('payment_method') or 'card'
        if mode == 'payment':
            params.update(self.payment_method_options(payment_method))
        else:
            params['payment_method_types'] = ['card']
            trial_days = data.get('trial_period_days') or 0
            if trial_days > 0:
                params['subscription_data'] = {'trial_period_days': trial_days}

        default_method = None
        if payment_method == 'card':
            default_method = self.saved_default_card(user.id, customer_id)
            if default_method:
                params['saved_payment_method_options'] = SAVED_CARD_REDISPLAY

        params['metadata'] = self.build_session_metadata(user, data, pricing, default_method)
        return params

    def payment_method_options(self, payment_method: str) -> Dict[str, Any]:
        if payment_method == 'konbini':
            return {
                'payment_method_types': ['konbini'],
                'payment_method_options': {
                    'konbini': {'expires_after_days': int(self.config.get('KONBINI_EXPIRES_AFTER_DAYS', 3))},
                },
            }
        if payment_method == 'bank_transfer':
            return {
                'payment_method_types': ['customer_balance'],
                'payment_method_options': {
                    'customer_balance': {
                        'funding_type': 'bank_transfer',
                        'bank_transfer': {'type': 'jp_bank_transfer'},
                    },
                },
            }
        return {'payment_method_types': ['card']}

    def saved_default_card(self, user_id: str, customer_id: str) -> Optional[str]:
        """Stripe id of the user's default card on file, if Stripe still has it."""
        card = PaymentCard.query.filter_by(user_id=user_id, is_default=True).first()
        if not card or not card.last4:
            return None
        try:
            methods = self.gateway.list_card_payment_methods(customer_id)
        except stripe.StripeError as e:
            logger.warning(f"Could not list payment methods for {customer_id}: {e}")
            return None
        for method in methods:
            if (method.get('card') or {}).get('last4') == card.last4:
                return method['id']
        return None

    def build_session_metadata(self, user, data: Dict[str, Any], pricing: PricingResult,
                               default_method: Optional[str]) -> Dict[str, str]:
        values: Dict[str, Any] = dict(data.get('metadata') or {})
        values.update({
            'user_id': user.id,
            'checkout_kind': pricing.kind,
            'notes': data.get('notes') or values.get('notes'),
            'default_payment_method': default_method,
        })

        if data['mode'] == 'payment':
            values.update({
                'points_use': pricing.points_use,
                'points_discount': pricing.discount,
                'subtotal': pricing.subtotal,
                'shipping_fee': pricing.shipping_fee,
                'items': encode_items_snapshot(pricing.snapshot),
            })
            if pricing.kind == 'custom':
                values['custom_name'] = data.get('custom_name')
            if pricing.participant_count is not None:
                values['participant_count'] = pricing.participant_count
            reservation = data.get('reservation_data')
            if isinstance(reservation, dict):
                values['facility_id'] = reservation.get('facility_id') or reservation.get('park_id')
                values['reservation_date'] = reservation.get('date') or reservation.get('reservation_date')

        terms = data.get('subscription')
        if data['mode'] == 'subscription' and terms:
            values.update({
                'sub_product_id': terms.get('product_id') or '',
                'sub_option_id': terms.get('option_id') or '',
                'sub_interval': terms.get('interval_months'),
                'sub_unit_price': terms.get('unit_price'),
            })

        return build_metadata(values)

    # --- submission ---

    def submit(self, params: Dict[str, Any]):
        """Create the session, retrying once with the fallback URLs on a URL rejection."""
        try:
            return self.gateway.create_checkout_session(params)
        except stripe.StripeError as e:
            if not is_url_rejection(e):
                logger.error(f"Stripe error creating checkout session: {e}",
                             customer_id=params.get('customer'))
                raise GatewayError("Failed to create checkout session") from e
            logger.warning(f"Stripe rejected redirect URLs, retrying with fallback: {e}",
                           success_url=params.get('success_url'))

        retry_params = dict(params)
        retry_params['success_url'] = self.config['FALLBACK_SUCCESS_URL']
        retry_params['cancel_url'] = self.config['FALLBACK_CANCEL_URL']
        try:
            return self.gateway.create_checkout_session(retry_params)
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating checkout session with fallback URLs: {e}",
                         customer_id=params.get('customer'))
            raise GatewayError("Failed to create checkout session") from e

    # --- session details ---

    def session_details(self, user, session_id: str) -> Dict[str, Any]:
        """Summary of one of the caller's own checkout sessions."""
        customer_id = self.mapper.find(user.id)
        try:
            session = self.gateway.retrieve_checkout_session(session_id)
        except stripe.InvalidRequestError:
            raise NotFoundError("Checkout session not found")
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve checkout session {session_id}: {e}")
            raise GatewayError("Failed to fetch session details") from e

        if not customer_id or session.get('customer') != customer_id:
            raise NotFoundError("Checkout session not found")

        metadata = dict(session.get('metadata') or {})
        line_items = (session.get('line_items') or {}).get('data') or []
        return {
            'id': session['id'],
            'customer': session.get('customer'),
            'payment_status': session.get('payment_status'),
            'amount_total': session.get('amount_total'),
            'currency': session.get('currency'),
            'mode': session.get('mode'),
            'status': session.get('status'),
            'client_reference_id': session.get('client_reference_id'),
            'metadata': metadata,
            'custom_name': metadata.get('custom_name'),
            'line_items': [
                {
                    'description': item.get('description'),
                    'quantity': item.get('quantity'),
                    'amount_total': item.get('amount_total'),
                    'unit_amount': (item.get('price') or {}).get('unit_amount'),
                }
                for item in line_items
            ],
        }
