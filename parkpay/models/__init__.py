# -*- coding: utf-8 -*-
from parkpay.database import db

from .user import User
from .payment_customer import PaymentCustomer
from .subscription import Subscription
from .order import Order, OrderItem
from .points import PointsLedgerEntry
from .notification import Notification
from .catalog import Product, CartItem, PaymentCard
from .webhook_event import WebhookEvent

__all__ = [
    "db",
    "User",
    "PaymentCustomer",
    "Subscription",
    "Order",
    "OrderItem",
    "PointsLedgerEntry",
    "Notification",
    "Product",
    "CartItem",
    "PaymentCard",
    "WebhookEvent",
]
