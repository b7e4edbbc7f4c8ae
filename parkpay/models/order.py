# -*- coding: utf-8 -*-
# parkpay/models/order.py
import datetime as dt
import json
from parkpay.database import db


class Order(db.Model):
    """
    Purchase record created from a confirmed or deferred checkout session.

    checkout_session_id is the correlation key: unique, so redelivered
    webhooks can never produce a second order for the same session.
    Amounts are integer yen and never updated after insert.
    """
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), unique=True, nullable=False, index=True)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    checkout_session_id = db.Column(db.String(255), unique=True, nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default='pending')
    payment_method = db.Column(db.String(20), nullable=False, default='credit_card')
    payment_status = db.Column(db.String(20), nullable=False, default='pending')

    total_amount = db.Column(db.Integer, nullable=False, default=0)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    shipping_fee = db.Column(db.Integer, nullable=False, default=0)
    final_amount = db.Column(db.Integer, nullable=False, default=0)

    is_subscription = db.Column(db.Boolean, nullable=False, default=False)
    subscription_id = db.Column(db.String(64), nullable=True)

    shipping_name = db.Column(db.String(255), nullable=False, default='-')
    shipping_postal_code = db.Column(db.String(20), nullable=False, default='-')
    shipping_address = db.Column(db.Text, nullable=False, default='-')
    shipping_phone = db.Column(db.String(50), nullable=False, default='-')

    payment_instructions = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=dt.datetime.utcnow)
    confirmed_at = db.Column(db.DateTime, nullable=True)

    items = db.relationship('OrderItem', backref='order', lazy=True,
                            cascade='all, delete-orphan', order_by='OrderItem.id')

    def to_dict(self):
        return {
            'order_number': self.order_number,
            'user_id': self.user_id,
            'checkout_session_id': self.checkout_session_id,
            'status': self.status,
            'payment_method': self.payment_method,
            'payment_status': self.payment_status,
            'total_amount': self.total_amount,
            'discount_amount': self.discount_amount,
            'shipping_fee': self.shipping_fee,
            'final_amount': self.final_amount,
            'is_subscription': self.is_subscription,
            'subscription_id': self.subscription_id,
            'payment_instructions': json.loads(self.payment_instructions) if self.payment_instructions else None,
            'items': [item.to_dict() for item in self.items],
        }


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(255), nullable=True)
    image_url = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Integer, nullable=False)

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'image_url': self.image_url,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'total_price': self.total_price,
        }
