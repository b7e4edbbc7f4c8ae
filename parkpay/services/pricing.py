# -*- coding: utf-8 -*-
"""
Pricing & Discount Engine.

Turns one purchase shape (custom amount, cart, reservation or a static
catalog price) into priced line items, then applies point redemption and the
minimum-charge guard. All amounts are integer yen (JPY is zero-decimal at
Stripe, so unit amounts are sent as-is).
"""

import json
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from parkpay.errors import ValidationError
from parkpay.models.catalog import CartItem

SHIPPING_LINE_NAME = 'Shipping'


def round_yen(value: Decimal) -> int:
    """Round half-up to whole yen."""
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def first_image_url(image_data: Optional[str]) -> Optional[str]:
    """Return the first http(s) URL from a JSON array or a plain URL string."""
    if not image_data:
        return None
    candidate = image_data
    try:
        parsed = json.loads(image_data)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, list):
        candidate = parsed[0] if parsed and isinstance(parsed[0], str) else None
    elif parsed is not None:
        candidate = None
    if candidate and candidate.startswith(('http://', 'https://')):
        return candidate
    return None


@dataclass
class LineItem:
    name: str
    unit_amount: Optional[int] = None
    quantity: int = 1
    price_id: Optional[str] = None
    product_id: Optional[str] = None
    image_url: Optional[str] = None
    is_shipping: bool = False

    @property
    def total(self) -> int:
        return (self.unit_amount or 0) * self.quantity

    def to_stripe(self, currency: str) -> Dict[str, Any]:
        if self.price_id:
            return {'price': self.price_id, 'quantity': self.quantity}
        product_data: Dict[str, Any] = {'name': self.name}
        if self.image_url:
            product_data['images'] = [self.image_url]
        if self.product_id:
            product_data['metadata'] = {'product_id': str(self.product_id)}
        return {
            'price_data': {
                'currency': currency,
                'product_data': product_data,
                'unit_amount': self.unit_amount,
            },
            'quantity': self.quantity,
        }


@dataclass
class PricingResult:
    """Priced line items for one purchase.

    ``subtotal`` is fixed when the result is built: product lines plus
    shipping, before any point discount. ``total`` tracks the current
    (possibly discounted) line items.
    """
    kind: str
    line_items: List[LineItem]
    shipping_fee: int = 0
    subtotal: int = 0
    discount: int = 0
    points_use: int = 0
    participant_count: Optional[int] = None
    snapshot: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def build(cls, kind: str, line_items: List[LineItem], shipping_fee: int = 0, **kwargs):
        result = cls(kind=kind, line_items=list(line_items), shipping_fee=shipping_fee, **kwargs)
        result.subtotal = sum(item.total for item in result.line_items)
        result.snapshot = [
            {
                'product_id': item.product_id,
                'name': item.name,
                'quantity': item.quantity,
                'unit_price': item.unit_amount,
                'image_url': item.image_url,
            }
            for item in result.line_items
            if item.product_id and not item.is_shipping
        ]
        return result

    @property
    def total(self) -> int:
        return sum(item.total for item in self.line_items)

    @property
    def is_inline_priced(self) -> bool:
        return all(item.price_id is None for item in self.line_items)


class PricingEngine:
    """Computes line items from purchase inputs using app pricing config."""

    def __init__(self, session: Session, config: Dict[str, Any]):
        self.db = session
        self.member_discount_rate = Decimal(str(config.get('MEMBER_DISCOUNT_RATE', '0.10')))
        self.shipping_fee = int(config.get('SHIPPING_FEE', 690))
        self.free_shipping_threshold = int(config.get('FREE_SHIPPING_THRESHOLD', 5000))
        self.reservation_base_fee = int(config.get('RESERVATION_BASE_FEE', 800))
        self.reservation_additional_fee = int(config.get('RESERVATION_ADDITIONAL_FEE', 400))
        self.min_charge_amount = int(config.get('MIN_CHARGE_AMOUNT', 50))
        self.default_day_pass_price_id = config.get('DEFAULT_DAY_PASS_PRICE_ID') or None

    # --- purchase shapes ---

    def price_custom(self, name: str, amount: int) -> PricingResult:
        """Single ad-hoc line item, e.g. a whole-facility booking."""
        if not name:
            raise ValidationError("custom_name is required with custom_amount")
        if amount is None or int(amount) <= 0:
            raise ValidationError("custom_amount must be a positive integer")
        return PricingResult.build('custom', [LineItem(name=name, unit_amount=int(amount))])

    def member_price(self, price: int, is_subscriber: bool) -> int:
        if not is_subscriber:
            return price
        return round_yen(Decimal(price) * (Decimal('1') - self.member_discount_rate))

    def price_cart(self, user_id: str, cart_item_ids: List[str], is_subscriber: bool) -> PricingResult:
        rows = CartItem.query.filter(
            CartItem.id.in_([str(i) for i in cart_item_ids]),
            CartItem.user_id == user_id,
        ).all()
        if not rows:
            raise ValidationError("No cart items found")

        position = {str(cart_id): idx for idx, cart_id in enumerate(cart_item_ids)}
        rows.sort(key=lambda row: position.get(str(row.id), len(position)))

        items = []
        for row in rows:
            if row.quantity is None or row.quantity <= 0:
                raise ValidationError(f"Invalid quantity for cart item {row.id}")
            product = row.product
            items.append(LineItem(
                name=product.name,
                unit_amount=self.member_price(product.price, is_subscriber),
                quantity=row.quantity,
                product_id=str(product.id),
                image_url=first_image_url(product.image_url),
            ))

        goods_subtotal = sum(item.total for item in items)
        shipping_fee = self.shipping_fee
        if goods_subtotal >= self.free_shipping_threshold or is_subscriber:
            shipping_fee = 0

        if shipping_fee > 0:
            items.append(LineItem(name=SHIPPING_LINE_NAME, unit_amount=shipping_fee, is_shipping=True))

        return PricingResult.build('cart', items, shipping_fee=shipping_fee)

    def reservation_headcount(self, reservation_data: Any) -> int:
        if isinstance(reservation_data, str):
            try:
                reservation_data = json.loads(reservation_data)
            except ValueError:
                raise ValidationError("reservation_data is not valid JSON")
        if not isinstance(reservation_data, dict):
            raise ValidationError("reservation_data must be an object")

        for key in ('participants', 'selectedDogs'):
            value = reservation_data.get(key)
            if isinstance(value, list):
                return len(value)
        count = reservation_data.get('participant_count')
        try:
            return max(0, int(count or 0))
        except (TypeError, ValueError):
            raise ValidationError("participant_count must be an integer")

    def reservation_total(self, headcount: int) -> int:
        if headcount <= 0:
            return 0
        return self.reservation_base_fee + (headcount - 1) * self.reservation_additional_fee

    def price_reservation(self, reservation_data: Any, price_id: Optional[str] = None) -> PricingResult:
        """Tiered per-head day pass, recomputed from the headcount only."""
        headcount = self.reservation_headcount(reservation_data)
        total = self.reservation_total(headcount)
        if total <= 0:
            result = self.price_static(price_id or self.default_day_pass_price_id)
            result.participant_count = 0
            return result
        item = LineItem(name=f"Day pass ({headcount} participants)", unit_amount=total)
        return PricingResult.build('reservation', [item], participant_count=headcount)

    def price_static(self, price_id: Optional[str]) -> PricingResult:
        if not price_id:
            raise ValidationError("price_id is required")
        return PricingResult.build('static', [LineItem(name=price_id, price_id=price_id)])

    # --- discounts ---

    def apply_points(self, result: PricingResult, points_use: Optional[int]) -> int:
        """
        Spread a point discount over the line items; returns the effective discount.

        The requested amount is clamped to [0, subtotal]. Lines are walked in
        order, each taking floor(remaining * line_total / remaining_total) and
        the last priced line the remainder. A reduction that does not divide
        evenly by the quantity splits the line in two so the discount is exact.
        """
        requested = max(0, int(points_use or 0))
        result.points_use = requested
        discount = min(requested, result.subtotal)
        if discount <= 0:
            return 0

        priced = [idx for idx, item in enumerate(result.line_items) if item.unit_amount]
        last_priced = priced[-1]
        remaining = discount
        remaining_total = sum(result.line_items[idx].total for idx in priced)

        adjusted: List[LineItem] = []
        for idx, item in enumerate(result.line_items):
            if remaining <= 0 or not item.unit_amount:
                adjusted.append(item)
                continue
            line_total = item.total
            if idx == last_priced:
                share = remaining
            else:
                share = remaining * line_total // remaining_total
            share = min(share, line_total)
            remaining_total -= line_total
            remaining -= share
            adjusted.extend(self._reduce_line(item, share))

        result.line_items = adjusted
        result.discount = discount - remaining
        return result.discount

    @staticmethod
    def _reduce_line(item: LineItem, reduction: int) -> List[LineItem]:
        if reduction <= 0:
            return [item]
        per_unit, extra = divmod(reduction, item.quantity)
        if extra == 0:
            return [replace(item, unit_amount=item.unit_amount - per_unit)]
        return [
            replace(item, unit_amount=item.unit_amount - per_unit - 1, quantity=extra),
            replace(item, unit_amount=item.unit_amount - per_unit, quantity=item.quantity - extra),
        ]

    def ensure_chargeable(self, result: PricingResult):
        """Reject totals Stripe would refuse to charge."""
        if not result.is_inline_priced:
            return
        total = result.total
        if total == 0 and result.subtotal > 0:
            raise ValidationError("The discounted total must be greater than zero")
        if 0 < total <= self.min_charge_amount:
            raise ValidationError(
                f"The discounted total must be more than ¥{self.min_charge_amount}"
            )
