# -*- coding: utf-8 -*-
"""
State Reconciler.

Pulls the customer's latest subscription from Stripe and overwrites the local
row keyed by customer id. Always a full replace: the local table is a read
cache and Stripe is the source of truth, so concurrent or repeated syncs
converge on the same row.
"""

from typing import Any, Dict, Optional

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parkpay.errors import GatewayError
from parkpay.models.subscription import Subscription
from parkpay.services.gateway import StripeGateway
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.reconciler')

EMPTY_STATE = {
    'subscription_id': None,
    'price_id': None,
    'status': 'not_started',
    'current_period_start': None,
    'current_period_end': None,
    'cancel_at_period_end': False,
    'payment_method_brand': None,
    'payment_method_last4': None,
    'pause_collection_behavior': None,
}


def subscription_state(subscription: Optional[Any]) -> Dict[str, Any]:
    """Flatten a Stripe subscription into the synced column values."""
    if not subscription:
        return dict(EMPTY_STATE)

    items = (subscription.get('items') or {}).get('data') or []
    first_item = items[0] if items else {}
    price = first_item.get('price') or {}

    # Newer API versions moved the period bounds onto the items
    period_start = subscription.get('current_period_start') or first_item.get('current_period_start')
    period_end = subscription.get('current_period_end') or first_item.get('current_period_end')

    brand = last4 = None
    payment_method = subscription.get('default_payment_method')
    if payment_method and not isinstance(payment_method, str):
        card = payment_method.get('card') or {}
        brand = card.get('brand')
        last4 = card.get('last4')

    return {
        'subscription_id': subscription.get('id'),
        'price_id': price.get('id') if isinstance(price, dict) else price,
        'status': subscription.get('status') or 'not_started',
        'current_period_start': period_start,
        'current_period_end': period_end,
        'cancel_at_period_end': bool(subscription.get('cancel_at_period_end')),
        'payment_method_brand': brand,
        'payment_method_last4': last4,
        'pause_collection_behavior': (subscription.get('pause_collection') or {}).get('behavior'),
    }


class SubscriptionReconciler:

    def __init__(self, gateway: StripeGateway, session: Session):
        self.gateway = gateway
        self.db = session

    def sync(self, customer_id: str) -> Subscription:
        """Overwrite the local row for ``customer_id`` with Stripe's current state."""
        try:
            latest = self.gateway.latest_subscription(customer_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to fetch subscriptions for customer {customer_id}: {e}",
                         customer_id=customer_id)
            raise GatewayError("Failed to sync subscription") from e

        state = subscription_state(latest)
        if latest is None:
            logger.info(f"No subscriptions found for customer {customer_id}", customer_id=customer_id)

        try:
            row = self._upsert(customer_id, state)
        except IntegrityError:
            # Lost an insert race with another sync for the same customer
            self.db.rollback()
            logger.warning(f"Subscription insert raced for customer {customer_id}, retrying as update",
                           customer_id=customer_id)
            row = self._upsert(customer_id, state)

        logger.info(f"Synced subscription for customer {customer_id}",
                    customer_id=customer_id, status=row.status,
                    subscription_id=row.subscription_id)
        return row

    def _upsert(self, customer_id: str, state: Dict[str, Any]) -> Subscription:
        row = Subscription.query.filter_by(customer_id=customer_id).first()
        if row is None:
            row = Subscription(customer_id=customer_id)
            self.db.add(row)
        for name in Subscription.SYNCED_FIELDS:
            setattr(row, name, state[name])
        self.db.commit()
        return row
