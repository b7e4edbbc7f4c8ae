# -*- coding: utf-8 -*-
# parkpay/models/payment_customer.py
import datetime as dt
from parkpay.database import db


class PaymentCustomer(db.Model):
    """1:1 mapping between a user and a Stripe customer."""
    __tablename__ = 'payment_customers'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    external_customer_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=dt.datetime.utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    # At most one live mapping per user; soft-deleted rows are kept for history
    __table_args__ = (
        db.Index(
            'uq_payment_customers_active_user', 'user_id', unique=True,
            postgresql_where=db.text('deleted_at IS NULL'),
            sqlite_where=db.text('deleted_at IS NULL'),
        ),
    )

    @classmethod
    def active_for_user(cls, user_id: str):
        return cls.query.filter(
            cls.user_id == user_id,
            cls.deleted_at.is_(None),
        ).first()

    @classmethod
    def user_id_for_customer(cls, customer_id: str):
        row = cls.query.filter(
            cls.external_customer_id == customer_id,
            cls.deleted_at.is_(None),
        ).first()
        return row.user_id if row else None
