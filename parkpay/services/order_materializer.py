# -*- coding: utf-8 -*-
"""
Order Materializer.

Turns a completed Stripe checkout session into an Order with its items.
The session id is the correlation key: materializing the same session twice
returns the existing order instead of inserting a duplicate.
"""

import datetime as dt
import json
import secrets
from typing import Any, Dict, List, Mapping, Optional, Tuple

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parkpay.models.catalog import Product
from parkpay.models.order import Order, OrderItem
from parkpay.models.user import User
from parkpay.services.gateway import StripeGateway
from parkpay.services.loyalty import parse_points
from parkpay.services.pricing import SHIPPING_LINE_NAME, first_image_url
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.orders')

PAYMENT_METHOD_NAMES = {
    'card': 'credit_card',
    'konbini': 'konbini',
    'customer_balance': 'bank_transfer',
}
PLACEHOLDER = '-'


def generate_order_number(prefix: str = 'SP') -> str:
    stamp = dt.datetime.utcnow().strftime('%Y%m%d%H%M%S')
    return f"{prefix}{stamp}{secrets.token_hex(3).upper()}"


def payment_method_name(checkout_session: Mapping[str, Any]) -> str:
    types = checkout_session.get('payment_method_types') or ['card']
    return PAYMENT_METHOD_NAMES.get(types[0], types[0])


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _join_address(address: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not address:
        return None
    parts = [address.get(k) for k in ('state', 'city', 'line1', 'line2')]
    joined = ' '.join(p for p in parts if p)
    return joined or None


class OrderMaterializer:

    def __init__(self, session: Session, gateway: StripeGateway):
        self.db = session
        self.gateway = gateway

    def find(self, checkout_session_id: str) -> Optional[Order]:
        return Order.query.filter_by(checkout_session_id=checkout_session_id).first()

    def materialize(self, checkout_session: Mapping[str, Any], user_id: str, *,
                    status: str = 'confirmed', payment_status: str = 'completed',
                    prefix: str = 'SP', is_subscription: bool = False,
                    payment_instructions: Optional[Dict[str, Any]] = None,
                    with_items: bool = True) -> Tuple[Order, bool]:
        """Insert the order for a checkout session, or return the one already there."""
        session_id = checkout_session['id']
        existing = self.find(session_id)
        if existing:
            logger.info(f"Order already exists for session {session_id}",
                        order_number=existing.order_number, checkout_session_id=session_id)
            return existing, False

        metadata = dict(checkout_session.get('metadata') or {})
        amount_total = _as_int(checkout_session.get('amount_total'))
        amount_subtotal = _as_int(checkout_session.get('amount_subtotal'), amount_total)

        order = Order(
            order_number=generate_order_number(prefix),
            user_id=user_id,
            checkout_session_id=session_id,
            status=status,
            payment_method=payment_method_name(checkout_session),
            payment_status=payment_status,
            total_amount=_as_int(metadata.get('subtotal'), amount_subtotal),
            discount_amount=parse_points(metadata.get('points_discount')),
            shipping_fee=_as_int(metadata.get('shipping_fee')),
            final_amount=amount_total,
            is_subscription=is_subscription,
            subscription_id=checkout_session.get('subscription') if is_subscription else None,
            payment_instructions=json.dumps(payment_instructions) if payment_instructions else None,
            notes=metadata.get('notes'),
            confirmed_at=dt.datetime.utcnow() if status == 'confirmed' else None,
        )
        for name, value in self.resolve_contact(checkout_session, metadata, user_id).items():
            setattr(order, name, value)

        items = self.build_items(checkout_session, metadata) if with_items else []

        try:
            self.db.add(order)
            self.db.flush()
            for item in items:
                item.order_id = order.id
                self.db.add(item)
            self.db.commit()
        except IntegrityError:
            # Another delivery of the same event got there first
            self.db.rollback()
            existing = self.find(session_id)
            if existing is None:
                raise
            return existing, False

        logger.info(f"Created order {order.order_number} for session {session_id}",
                    user_id=user_id, status=status, final_amount=amount_total,
                    item_count=len(items))
        return order, True

    # --- contact fields ---

    def resolve_contact(self, checkout_session: Mapping[str, Any], metadata: Mapping[str, Any],
                        user_id: str) -> Dict[str, str]:
        """Shipping/contact columns: session details, then metadata, then profile."""
        shipping = (checkout_session.get('shipping_details')
                    or (checkout_session.get('collected_information') or {}).get('shipping_details')
                    or {})
        customer = checkout_session.get('customer_details') or {}
        shipping_address = shipping.get('address') or {}
        customer_address = customer.get('address') or {}

        user = self.db.get(User, user_id)
        profile = {
            'shipping_name': getattr(user, 'name', None),
            'shipping_postal_code': getattr(user, 'postal_code', None),
            'shipping_address': getattr(user, 'address', None),
            'shipping_phone': getattr(user, 'phone', None),
        }
        session_values = {
            'shipping_name': shipping.get('name') or customer.get('name'),
            'shipping_postal_code': shipping_address.get('postal_code') or customer_address.get('postal_code'),
            'shipping_address': _join_address(shipping_address) or _join_address(customer_address),
            'shipping_phone': shipping.get('phone') or customer.get('phone'),
        }

        resolved = {}
        for name in profile:
            resolved[name] = session_values[name] or metadata.get(name) or profile[name] or PLACEHOLDER
        return resolved

    # --- items ---

    def build_items(self, checkout_session: Mapping[str, Any], metadata: Mapping[str, Any]) -> List[OrderItem]:
        items = self.items_from_snapshot(metadata.get('items'))
        if items:
            return items
        return self.items_from_gateway(checkout_session['id'])

    def items_from_snapshot(self, raw: Optional[str]) -> List[OrderItem]:
        if not raw:
            return []
        try:
            snapshot = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unreadable item snapshot in session metadata")
            return []
        if not isinstance(snapshot, list):
            return []

        items = []
        for entry in snapshot:
            if not isinstance(entry, dict):
                continue
            quantity = max(1, _as_int(entry.get('quantity'), 1))
            unit_price = _as_int(entry.get('unit_price'))
            name = entry.get('name')
            image_url = entry.get('image_url')
            product_id = entry.get('product_id')
            if product_id and (not name or not image_url):
                product = self.db.get(Product, str(product_id))
                if product is not None:
                    name = name or product.name
                    image_url = image_url or first_image_url(product.image_url)
            items.append(OrderItem(
                product_id=str(product_id) if product_id else None,
                product_name=name,
                image_url=image_url,
                quantity=quantity,
                unit_price=unit_price,
                total_price=unit_price * quantity,
            ))
        return items

    def items_from_gateway(self, session_id: str) -> List[OrderItem]:
        try:
            expanded = self.gateway.retrieve_checkout_session(session_id, expand_line_items=True)
        except stripe.StripeError as e:
            logger.error(f"Failed to fetch line items for session {session_id}: {e}",
                         checkout_session_id=session_id)
            return []

        items = []
        for line in (expanded.get('line_items') or {}).get('data') or []:
            name = line.get('description')
            if name == SHIPPING_LINE_NAME:
                continue
            price = line.get('price') or {}
            product = price.get('product') if isinstance(price, dict) else None
            product = product if isinstance(product, dict) else {}
            quantity = max(1, _as_int(line.get('quantity'), 1))
            unit_price = _as_int(price.get('unit_amount')) if isinstance(price, dict) else 0
            images = product.get('images') or []
            items.append(OrderItem(
                product_id=(product.get('metadata') or {}).get('product_id'),
                product_name=name or product.get('name'),
                image_url=images[0] if images else None,
                quantity=quantity,
                unit_price=unit_price,
                total_price=_as_int(line.get('amount_total'), unit_price * quantity),
            ))
        return items

    # --- deferred payments ---

    def confirm_pending(self, checkout_session_id: str) -> Tuple[Optional[Order], bool]:
        """Flip the pending order for a session to confirmed; returns (order, changed)."""
        order = self.find(checkout_session_id)
        if order is None:
            return None, False
        if order.status == 'confirmed':
            return order, False
        order.status = 'confirmed'
        order.payment_status = 'completed'
        order.confirmed_at = dt.datetime.utcnow()
        self.db.commit()
        logger.info(f"Confirmed order {order.order_number}", checkout_session_id=checkout_session_id)
        return order, True

    def mark_failed(self, checkout_session_id: str) -> Tuple[Optional[Order], bool]:
        order = self.find(checkout_session_id)
        if order is None or order.payment_status == 'failed':
            return order, False
        order.status = 'cancelled'
        order.payment_status = 'failed'
        self.db.commit()
        logger.info(f"Marked order {order.order_number} as payment failed",
                    checkout_session_id=checkout_session_id)
        return order, True
