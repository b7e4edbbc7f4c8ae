# -*- coding: utf-8 -*-

import json

import pytest

from parkpay.database import db
from parkpay.errors import ValidationError
from parkpay.models import User
from parkpay.services.pricing import LineItem, PricingEngine, PricingResult, first_image_url, round_yen


@pytest.fixture
def engine(app):
    return PricingEngine(db.session, app.config)


def product_lines_total(result):
    return sum(item.total for item in result.line_items if not item.is_shipping)


class TestCartPricing:
    """Cart totals, member discount and shipping."""

    def test_scenario_a_free_shipping_over_threshold(self, engine, user, add_cart_item):
        cart = [add_cart_item("prod-leash", quantity=2)]
        result = engine.price_cart(user.id, cart, is_subscriber=False)

        assert result.shipping_fee == 0
        assert result.subtotal == 6000
        assert result.total == 6000
        assert all(not item.is_shipping for item in result.line_items)

    def test_scenario_b_subscriber_discount_and_shipping_waived(self, engine, user, add_cart_item):
        cart = [add_cart_item("prod-leash")]
        result = engine.price_cart(user.id, cart, is_subscriber=True)

        assert result.line_items[0].unit_amount == 2700
        assert result.shipping_fee == 0
        assert result.total == 2700

    def test_shipping_line_added_below_threshold(self, engine, user, add_cart_item):
        cart = [add_cart_item("prod-treats")]
        result = engine.price_cart(user.id, cart, is_subscriber=False)

        assert result.shipping_fee == 690
        assert result.line_items[-1].is_shipping
        assert result.line_items[-1].name == "Shipping"
        assert result.subtotal == 1200 + 690

    def test_member_price_rounds_half_up(self, engine, user, add_cart_item):
        cart = [add_cart_item("prod-bowl")]
        result = engine.price_cart(user.id, cart, is_subscriber=True)
        # 1005 * 0.9 = 904.5
        assert result.line_items[0].unit_amount == 905

    def test_subtotal_is_lines_plus_shipping(self, engine, user, add_cart_item):
        carts = [
            [add_cart_item("prod-treats")],
            [add_cart_item("prod-leash"), add_cart_item("prod-bowl", quantity=3)],
            [add_cart_item("prod-treats", quantity=2), add_cart_item("prod-bowl")],
        ]
        for cart in carts:
            for is_subscriber in (False, True):
                result = engine.price_cart(user.id, cart, is_subscriber=is_subscriber)
                assert product_lines_total(result) + result.shipping_fee == result.subtotal

    def test_line_items_keep_product_and_image(self, engine, user, add_cart_item):
        cart = [add_cart_item("prod-leash"), add_cart_item("prod-bowl")]
        result = engine.price_cart(user.id, cart, is_subscriber=False)

        leash, bowl = result.line_items[0], result.line_items[1]
        assert leash.product_id == "prod-leash"
        assert leash.image_url == "https://cdn.example.com/leash.jpg"
        assert bowl.image_url is None
        assert [entry["product_id"] for entry in result.snapshot] == ["prod-leash", "prod-bowl"]

    def test_other_users_cart_items_are_not_priced(self, engine, user, add_cart_item):
        db.session.add(User(id="user-2", email="hanako@example.com"))
        db.session.commit()
        cart = [add_cart_item("prod-leash", user_id="user-2")]

        with pytest.raises(ValidationError, match="No cart items found"):
            engine.price_cart(user.id, cart, is_subscriber=False)


class TestReservationPricing:
    """Tiered day-pass pricing from the participant count."""

    def test_scenario_c_three_participants(self, engine):
        result = engine.price_reservation({"participants": ["a", "b", "c"]})
        assert result.total == 800 + 400 + 400
        assert result.participant_count == 3

    def test_single_participant_pays_base_fee(self, engine):
        assert engine.price_reservation({"selectedDogs": ["pochi"]}).total == 800

    def test_headcount_from_count_field_and_json_string(self, engine):
        assert engine.price_reservation({"participant_count": "4"}).total == 2000
        assert engine.price_reservation(json.dumps({"participants": [1, 2]})).total == 1200

    def test_zero_headcount_falls_back_to_day_pass_price(self, engine):
        result = engine.price_reservation({"participants": []})
        assert result.kind == "static"
        assert result.line_items[0].price_id == "price_day_pass"
        assert result.participant_count == 0

    def test_invalid_reservation_json_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.price_reservation("{not json")


class TestPointsDiscount:
    """Point redemption spread over line items."""

    def test_scenario_d_single_line(self, engine):
        result = engine.price_custom("Whole park booking", 1000)
        discount = engine.apply_points(result, 500)

        assert discount == 500
        assert result.line_items[0].unit_amount == 500
        assert result.points_use == 500

    def test_discount_is_exact_and_never_negative(self, engine, user, add_cart_item):
        cart = [
            add_cart_item("prod-leash", quantity=2),
            add_cart_item("prod-treats", quantity=3),
            add_cart_item("prod-bowl"),
        ]
        for points in (0, 1, 7, 333, 5000, 10604, 10605, 20000):
            result = engine.price_cart(user.id, cart, is_subscriber=False)
            subtotal = result.subtotal
            discount = engine.apply_points(result, points)

            assert discount == min(points, subtotal)
            assert result.total == subtotal - discount
            assert all(item.unit_amount >= 0 for item in result.line_items)

    def test_split_lines_keep_quantities(self, engine, user, add_cart_item):
        cart = [add_cart_item("prod-treats", quantity=3)]
        result = engine.price_cart(user.id, cart, is_subscriber=False)
        engine.apply_points(result, 100)

        treats = [item for item in result.line_items if item.product_id == "prod-treats"]
        assert sum(item.quantity for item in treats) == 3

    def test_negative_points_ignored(self, engine):
        result = engine.price_custom("Booking", 1000)
        assert engine.apply_points(result, -50) == 0
        assert result.total == 1000

    def test_static_prices_are_not_discounted(self, engine):
        result = engine.price_static("price_day_pass")
        assert engine.apply_points(result, 500) == 0


class TestMinimumCharge:

    @pytest.mark.parametrize("points", [950, 960, 1000])
    def test_rejects_totals_at_or_below_minimum(self, engine, points):
        result = engine.price_custom("Booking", 1000)
        engine.apply_points(result, points)
        with pytest.raises(ValidationError):
            engine.ensure_chargeable(result)

    def test_accepts_total_above_minimum(self, engine):
        result = engine.price_custom("Booking", 1000)
        engine.apply_points(result, 949)
        engine.ensure_chargeable(result)
        assert result.total == 51

    def test_custom_amount_must_be_positive(self, engine):
        with pytest.raises(ValidationError):
            engine.price_custom("Booking", 0)


class TestHelpers:

    def test_round_yen(self):
        from decimal import Decimal
        assert round_yen(Decimal("904.5")) == 905
        assert round_yen(Decimal("904.4")) == 904

    def test_first_image_url(self):
        assert first_image_url('["https://a/1.jpg", "https://a/2.jpg"]') == "https://a/1.jpg"
        assert first_image_url("https://a/plain.jpg") == "https://a/plain.jpg"
        assert first_image_url("not-a-url") is None
        assert first_image_url(None) is None

    def test_line_item_to_stripe(self):
        inline = LineItem(name="Leash", unit_amount=3000, quantity=2, product_id="prod-leash",
                          image_url="https://cdn.example.com/leash.jpg")
        assert inline.to_stripe("jpy") == {
            "price_data": {
                "currency": "jpy",
                "product_data": {
                    "name": "Leash",
                    "images": ["https://cdn.example.com/leash.jpg"],
                    "metadata": {"product_id": "prod-leash"},
                },
                "unit_amount": 3000,
            },
            "quantity": 2,
        }
        assert LineItem(name="x", price_id="price_1").to_stripe("jpy") == {"price": "price_1", "quantity": 1}

    def test_build_fixes_subtotal(self):
        result = PricingResult.build("custom", [LineItem(name="a", unit_amount=300, quantity=2)])
        result.line_items[0].unit_amount = 100
        assert result.subtotal == 600
        assert result.total == 200
