# -*- coding: utf-8 -*-
"""User-initiated subscription changes, applied at Stripe and then re-synced."""

from typing import Any, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from parkpay.errors import GatewayError, NotFoundError
from parkpay.models.subscription import Subscription
from parkpay.services.customer_mapper import CustomerIdentityMapper
from parkpay.services.gateway import StripeGateway
from parkpay.services.reconciler import SubscriptionReconciler
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.reconciler')

CANCELLABLE_STATUSES = frozenset({'active', 'trialing', 'paused'})
PAUSABLE_STATUSES = frozenset({'active', 'trialing'})


class SubscriptionService:

    def __init__(self, gateway: StripeGateway, session: Session):
        self.gateway = gateway
        self.mapper = CustomerIdentityMapper(gateway, session)
        self.reconciler = SubscriptionReconciler(gateway, session)

    def own_subscription(self, user, subscription_id: Optional[str] = None) -> Subscription:
        """The caller's synced subscription row; NotFoundError for anyone else's."""
        customer_id = self.mapper.find(user.id)
        if not customer_id:
            raise NotFoundError("No subscription found for this user")

        row = Subscription.query.filter_by(customer_id=customer_id).first()
        if row is None or not row.subscription_id:
            raise NotFoundError("No subscription found for this user")
        if subscription_id and subscription_id != row.subscription_id:
            raise NotFoundError("No subscription found for this user")
        return row

    def cancel_at_period_end(self, user, subscription_id: Optional[str] = None) -> Dict[str, Any]:
        """Stop renewal of the user's subscription; access runs to the period end."""
        row = self.own_subscription(user, subscription_id)
        if row.status == 'canceled':
            return {'message': 'Subscription is already canceled',
                    'subscription_id': row.subscription_id}
        if row.status not in CANCELLABLE_STATUSES:
            raise NotFoundError("No active subscription found for this user")

        target = row.subscription_id
        try:
            self.gateway.set_cancel_at_period_end(target, True)
        except stripe.StripeError as e:
            logger.error(f"Failed to cancel subscription {target}: {e}", customer_id=row.customer_id)
            raise GatewayError("Failed to cancel subscription") from e

        logger.info(f"Subscription {target} set to cancel at period end", customer_id=row.customer_id)
        row = self.reconciler.sync(row.customer_id)
        return {
            'message': 'Subscription will be canceled at the end of the current period',
            'subscription_id': target,
            'subscription': row.to_dict(),
        }

    def pause(self, user, subscription_id: Optional[str] = None) -> Dict[str, Any]:
        """Void upcoming invoices until the subscription is resumed."""
        row = self.own_subscription(user, subscription_id)
        if row.is_paused:
            return {'message': 'Subscription is already paused',
                    'subscription_id': row.subscription_id}
        if row.status not in PAUSABLE_STATUSES:
            raise NotFoundError("No active subscription found for this user")

        target = row.subscription_id
        try:
            self.gateway.pause_collection(target, 'void')
        except stripe.StripeError as e:
            logger.error(f"Failed to pause subscription {target}: {e}", customer_id=row.customer_id)
            raise GatewayError("Failed to pause subscription") from e

        logger.info(f"Subscription {target} paused", customer_id=row.customer_id)
        row = self.reconciler.sync(row.customer_id)
        return {
            'message': 'Subscription has been paused',
            'subscription_id': target,
            'subscription': row.to_dict(),
        }
