# -*- coding: utf-8 -*-
"""
Event Router.

Dispatches verified Stripe events to the reconciler, order materializer,
loyalty ledger and notifier. Every handler is safe to run again for the same
event: reconciliation is a full replace, orders are keyed by checkout
session id, and ledger entries are unique per reference.
"""

import re
from typing import Any, Callable, Dict, Mapping, Optional

import stripe
from flask import Flask
from sqlalchemy.orm import Session

from parkpay.database import db
from parkpay.models.payment_customer import PaymentCustomer
from parkpay.models.user import User
from parkpay.services.gateway import StripeGateway
from parkpay.services.loyalty import LoyaltyLedger
from parkpay.services.notifier import Notifier
from parkpay.services.order_materializer import OrderMaterializer
from parkpay.services.reconciler import SubscriptionReconciler
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.webhooks')

HANDLED = 'handled'
IGNORED = 'ignored'

PREMIUM_OWNER_PATTERN = re.compile(r'premium_owner', re.IGNORECASE)

MESSAGES = {
    'subscription': (
        'Subscription started',
        'Your subscription has started. Thank you for joining.',
        '/dashboard',
    ),
    'premium_owner': (
        'Premium owner registration complete',
        'Reservation management and coupon management (premium) are now available.',
        '/my-facilities-management',
    ),
    'paid': (
        'Payment complete',
        'Payment for your order is complete. Thank you for your purchase.',
        '/dashboard',
    ),
    'awaiting_payment': (
        'Awaiting payment',
        'Your order has been received. Please complete payment using the instructions provided.',
        '/dashboard',
    ),
    'payment_failed': (
        'Payment failed',
        'We could not confirm payment for your order. Please try again.',
        '/dashboard',
    ),
}


def payment_instructions_from(payment_intent: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Extract voucher or bank transfer details from a payment intent's next_action."""
    next_action = (payment_intent or {}).get('next_action') or {}
    konbini = next_action.get('konbini_display_details')
    if konbini:
        return {
            'type': 'konbini',
            'hosted_voucher_url': konbini.get('hosted_voucher_url'),
            'expires_at': konbini.get('expires_at'),
        }
    transfer = next_action.get('display_bank_transfer_instructions')
    if transfer:
        return {
            'type': 'bank_transfer',
            'amount_remaining': transfer.get('amount_remaining'),
            'currency': transfer.get('currency'),
            'reference': transfer.get('reference'),
            'hosted_instructions_url': transfer.get('hosted_instructions_url'),
            'financial_addresses': transfer.get('financial_addresses') or [],
        }
    return None


class EventRouter:

    def __init__(self, session: Session, gateway: StripeGateway,
                 reconciler: SubscriptionReconciler, materializer: OrderMaterializer,
                 ledger: LoyaltyLedger, notifier: Notifier):
        self.db = session
        self.gateway = gateway
        self.reconciler = reconciler
        self.materializer = materializer
        self.ledger = ledger
        self.notifier = notifier
        self.handlers: Dict[str, Callable[[Mapping[str, Any], str], str]] = {
            'checkout.session.completed': self.handle_checkout_completed,
            'checkout.session.async_payment_succeeded': self.handle_async_payment_succeeded,
            'checkout.session.async_payment_failed': self.handle_async_payment_failed,
            'payment_intent.succeeded': self.handle_payment_intent_succeeded,
        }

    def dispatch(self, event: Mapping[str, Any]) -> str:
        """Route one event; returns 'handled' or 'ignored'."""
        event_type = event.get('type') or ''
        obj = ((event.get('data') or {}).get('object')) or {}

        handler = self.handlers.get(event_type)
        if handler is None and event_type.startswith(('customer.subscription.', 'invoice.')):
            handler = self.handle_subscription_change
        if handler is None:
            logger.info(f"Ignoring unhandled event type {event_type}", event_id=event.get('id'))
            return IGNORED

        customer_id = obj.get('customer')
        if not customer_id or not isinstance(customer_id, str):
            logger.warning(f"No customer on event {event.get('id')}", event_type=event_type)
            return IGNORED

        return handler(obj, customer_id)

    # --- subscription state ---

    def handle_subscription_change(self, obj: Mapping[str, Any], customer_id: str) -> str:
        self.reconciler.sync(customer_id)
        return HANDLED

    def handle_payment_intent_succeeded(self, obj: Mapping[str, Any], customer_id: str) -> str:
        # One-time payments are handled through checkout.session.completed
        if not obj.get('invoice'):
            return IGNORED
        self.reconciler.sync(customer_id)
        return HANDLED

    # --- checkout sessions ---

    def handle_checkout_completed(self, obj: Mapping[str, Any], customer_id: str) -> str:
        mode = obj.get('mode')
        if mode == 'subscription':
            return self.subscription_checkout(obj, customer_id)
        if mode != 'payment':
            return IGNORED
        if obj.get('payment_status') == 'paid':
            return self.paid_checkout(obj, customer_id)
        return self.deferred_checkout(obj, customer_id)

    def subscription_checkout(self, obj: Mapping[str, Any], customer_id: str) -> str:
        self.reconciler.sync(customer_id)

        user_id = self.user_for(obj, customer_id)
        if not user_id:
            return HANDLED

        order, created = self.materializer.materialize(
            obj, user_id, prefix='SUB', is_subscription=True, with_items=False,
        )
        if created:
            notes = (obj.get('metadata') or {}).get('notes') or ''
            key = 'premium_owner' if PREMIUM_OWNER_PATTERN.search(notes) else 'subscription'
            self.notify(user_id, key, {'mode': 'subscription', 'subscription_id': obj.get('subscription')})
        return HANDLED

    def paid_checkout(self, obj: Mapping[str, Any], customer_id: str) -> str:
        user_id = self.user_for(obj, customer_id)
        if not user_id:
            return IGNORED

        order, created = self.materializer.materialize(obj, user_id)
        self.fulfil(order, obj, user_id, notify=created)
        return HANDLED

    def deferred_checkout(self, obj: Mapping[str, Any], customer_id: str) -> str:
        """Konbini or bank transfer: the order waits for async_payment_succeeded."""
        user_id = self.user_for(obj, customer_id)
        if not user_id:
            return IGNORED

        order, created = self.materializer.materialize(
            obj, user_id, status='pending', payment_status='pending',
            payment_instructions=self.payment_instructions(obj),
        )
        if created:
            self.notify(user_id, 'awaiting_payment',
                        {'mode': 'payment', 'checkout_session_id': obj.get('id'),
                         'order_number': order.order_number})
        return HANDLED

    def handle_async_payment_succeeded(self, obj: Mapping[str, Any], customer_id: str) -> str:
        user_id = self.user_for(obj, customer_id)
        if not user_id:
            return IGNORED

        order, changed = self.materializer.confirm_pending(obj['id'])
        if order is None:
            logger.info(f"No pending order for session {obj['id']}, creating a confirmed one")
            order, changed = self.materializer.materialize(obj, user_id)
        self.fulfil(order, obj, user_id, notify=changed)
        return HANDLED

    def handle_async_payment_failed(self, obj: Mapping[str, Any], customer_id: str) -> str:
        order, changed = self.materializer.mark_failed(obj['id'])
        if order is None:
            logger.warning(f"Async payment failed for session {obj['id']} with no local order")
            return IGNORED
        if changed:
            self.notify(order.user_id, 'payment_failed',
                        {'mode': 'payment', 'checkout_session_id': obj['id'],
                         'order_number': order.order_number})
        return HANDLED

    # --- helpers ---

    def fulfil(self, order, obj: Mapping[str, Any], user_id: str, notify: bool):
        """Ledger writes and the payment notification; never raises."""
        session_id = obj['id']
        self.ledger.deduct_reserved(user_id, obj.get('metadata'), session_id)
        self.ledger.award(user_id, order.final_amount, session_id)
        if notify:
            self.notify(user_id, 'paid', {'mode': 'payment', 'checkout_session_id': session_id,
                                          'amount_total': order.final_amount,
                                          'order_number': order.order_number})

    def notify(self, user_id: str, key: str, data: Dict[str, Any]):
        title, message, link_path = MESSAGES[key]
        self.notifier.notify(user_id, title, message, link_path=link_path, data=data)

    def user_for(self, obj: Mapping[str, Any], customer_id: str) -> Optional[str]:
        user_id = PaymentCustomer.user_id_for_customer(customer_id)
        if user_id:
            return user_id
        candidate = (obj.get('metadata') or {}).get('user_id') or obj.get('client_reference_id')
        if candidate and self.db.get(User, candidate) is not None:
            return candidate
        logger.warning(f"No user mapped to customer {customer_id}", customer_id=customer_id)
        return None

    def payment_instructions(self, obj: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        payment_intent_id = obj.get('payment_intent')
        if not payment_intent_id:
            return None
        if not isinstance(payment_intent_id, str):
            return payment_instructions_from(payment_intent_id)
        try:
            payment_intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to fetch payment intent {payment_intent_id}: {e}")
            return None
        return payment_instructions_from(payment_intent)


def build_event_router(app: Flask) -> EventRouter:
    """Wire an EventRouter from the app's config and gateway."""
    gateway = app.extensions['stripe_gateway']
    session = db.session
    return EventRouter(
        session=session,
        gateway=gateway,
        reconciler=SubscriptionReconciler(gateway, session),
        materializer=OrderMaterializer(session, gateway),
        ledger=LoyaltyLedger(session, app.config.get('POINTS_EARN_RATE', '0.10')),
        notifier=Notifier(
            session,
            messaging_url=app.config.get('MESSAGING_WEBHOOK_URL'),
            site_url=app.config.get('PUBLIC_SITE_URL', ''),
            timeout=app.config.get('MESSAGING_TIMEOUT_SECONDS', 5.0),
            http=app.extensions.get('messaging_http'),
        ),
    )
