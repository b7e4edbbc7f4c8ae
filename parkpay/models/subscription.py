# -*- coding: utf-8 -*-
# parkpay/models/subscription.py
from parkpay.database import db

# Statuses that block starting another subscription checkout
LIVE_SUBSCRIPTION_STATUSES = frozenset({'active', 'trialing', 'past_due', 'unpaid'})
MEMBER_STATUSES = frozenset({'active', 'trialing'})


class Subscription(db.Model):
    """
    Local read cache of the customer's Stripe subscription.

    Keyed by the Stripe customer id rather than a user foreign key. Every sync
    overwrites all columns. There is no auto-updated timestamp column, so
    that syncing unchanged upstream data leaves the row identical.
    """
    __tablename__ = 'subscriptions'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    subscription_id = db.Column(db.String(64), nullable=True)
    price_id = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(32), nullable=False, default='not_started')
    current_period_start = db.Column(db.BigInteger, nullable=True)
    current_period_end = db.Column(db.BigInteger, nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    payment_method_brand = db.Column(db.String(32), nullable=True)
    payment_method_last4 = db.Column(db.String(4), nullable=True)
    # Set while invoicing is paused; Stripe keeps status 'active' meanwhile
    pause_collection_behavior = db.Column(db.String(32), nullable=True)

    SYNCED_FIELDS = (
        'subscription_id', 'price_id', 'status', 'current_period_start',
        'current_period_end', 'cancel_at_period_end', 'payment_method_brand',
        'payment_method_last4', 'pause_collection_behavior',
    )

    @property
    def is_member(self) -> bool:
        return self.status in MEMBER_STATUSES

    @property
    def is_paused(self) -> bool:
        return self.status == 'paused' or bool(self.pause_collection_behavior)

    @property
    def blocks_new_subscription(self) -> bool:
        return self.status in LIVE_SUBSCRIPTION_STATUSES

    def to_dict(self):
        data = {'customer_id': self.customer_id}
        data.update({name: getattr(self, name) for name in self.SYNCED_FIELDS})
        return data
