# -*- coding: utf-8 -*-
"""
Customer Identity Mapper.

Maps an application user to a Stripe customer, creating the customer on the
first checkout. A Stripe customer whose mapping could not be persisted is
deleted again, either before the error reaches the caller or, when a
concurrent request mapped the user first, before its id is returned.
"""

import stripe
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from parkpay.errors import GatewayError
from parkpay.models.payment_customer import PaymentCustomer
from parkpay.models.subscription import Subscription
from parkpay.services.gateway import StripeGateway
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.checkout')


class CustomerIdentityMapper:
    """Get-or-create for the user -> Stripe customer mapping."""

    def __init__(self, gateway: StripeGateway, session: Session):
        self.gateway = gateway
        self.db = session

    def find(self, user_id: str):
        mapping = PaymentCustomer.active_for_user(user_id)
        return mapping.external_customer_id if mapping else None

    def get_or_create(self, user_id: str, email: str) -> str:
        """Return the user's Stripe customer id, creating it if missing."""
        existing = self.find(user_id)
        if existing:
            return existing

        try:
            customer = self.gateway.create_customer(email=email, user_id=user_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer for user {user_id}: {e}")
            raise GatewayError("Failed to create customer") from e

        customer_id = customer['id']
        logger.info(f"Created Stripe customer {customer_id} for user {user_id}",
                    user_id=user_id, customer_id=customer_id)

        try:
            self.db.add(PaymentCustomer(user_id=user_id, external_customer_id=customer_id))
            self.db.add(Subscription(customer_id=customer_id, status='not_started'))
            self.db.commit()
        except IntegrityError as e:
            # A concurrent first checkout mapped this user already
            self.db.rollback()
            winner = PaymentCustomer.active_for_user(user_id)
            self._compensate(customer_id)
            if winner is None:
                logger.error(f"Failed to save customer mapping for user {user_id}: {e}",
                             user_id=user_id, customer_id=customer_id)
                raise GatewayError("Failed to create customer mapping") from e
            logger.info(f"User {user_id} was mapped concurrently, keeping {winner.external_customer_id}",
                        user_id=user_id, customer_id=winner.external_customer_id)
            return winner.external_customer_id
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save customer mapping for user {user_id}: {e}",
                         user_id=user_id, customer_id=customer_id)
            self._compensate(customer_id)
            raise GatewayError("Failed to create customer mapping") from e

        return customer_id

    def ensure_subscription_row(self, customer_id: str) -> Subscription:
        """Create the not_started row for a customer mapped before it existed."""
        row = Subscription.query.filter_by(customer_id=customer_id).first()
        if row:
            return row
        row = Subscription(customer_id=customer_id, status='not_started')
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            # A concurrent request may have inserted it first
            row = Subscription.query.filter_by(customer_id=customer_id).first()
            if row is None:
                logger.error(f"Failed to create subscription record for {customer_id}: {e}")
                raise GatewayError("Failed to create subscription record") from e
        return row

    def _compensate(self, customer_id: str):
        try:
            self.gateway.delete_customer(customer_id)
            logger.info(f"Deleted orphaned Stripe customer {customer_id}")
        except stripe.StripeError as e:
            logger.error(f"Failed to delete Stripe customer {customer_id} after database error: {e}",
                         customer_id=customer_id)
