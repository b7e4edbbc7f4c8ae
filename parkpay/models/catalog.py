# -*- coding: utf-8 -*-
# parkpay/models/catalog.py
from parkpay.database import db


class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Integer, nullable=False)
    # Either a plain URL or a JSON array of URLs
    image_url = db.Column(db.Text, nullable=True)


class CartItem(db.Model):
    __tablename__ = 'cart_items'

    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    product_id = db.Column(db.String(64), db.ForeignKey('products.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship('Product', lazy='joined')


class PaymentCard(db.Model):
    """A card the user saved on file; only the masked number is kept."""
    __tablename__ = 'payment_cards'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    card_number_masked = db.Column(db.String(32), nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    @property
    def last4(self) -> str:
        return (self.card_number_masked or '')[-4:]
