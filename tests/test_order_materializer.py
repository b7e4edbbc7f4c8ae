# -*- coding: utf-8 -*-

import json
import re

import pytest
import stripe

from parkpay.database import db
from parkpay.models import Order, OrderItem
from parkpay.services.order_materializer import (
    OrderMaterializer,
    generate_order_number,
    payment_method_name,
)


def checkout_session(**overrides):
    session = {
        "id": "cs_test_materialize",
        "mode": "payment",
        "payment_method_types": ["card"],
        "amount_total": 2700,
        "amount_subtotal": 2700,
        "metadata": {"user_id": "user-1", "subtotal": "2700", "shipping_fee": "0"},
    }
    session.update(overrides)
    return session


@pytest.fixture
def materializer(app, gateway):
    return OrderMaterializer(db.session, gateway)


class TestMaterialize:

    def test_order_number_format(self):
        assert re.fullmatch(r"SP\d{14}[0-9A-F]{6}", generate_order_number())
        assert generate_order_number("SUB").startswith("SUB")

    def test_second_materialize_returns_existing(self, materializer, user):
        first, created = materializer.materialize(checkout_session(), user.id, with_items=False)
        again, created_again = materializer.materialize(checkout_session(), user.id, with_items=False)

        assert created is True
        assert created_again is False
        assert again.id == first.id
        assert Order.query.count() == 1

    def test_compact_snapshot_resolves_product(self, materializer, user, products):
        metadata = {"user_id": user.id, "items": json.dumps([
            {"product_id": "prod-leash", "quantity": 2, "unit_price": 2700},
        ])}
        order, _ = materializer.materialize(checkout_session(metadata=metadata), user.id)

        item = OrderItem.query.filter_by(order_id=order.id).one()
        assert item.product_name == "Leash"
        assert item.image_url == "https://cdn.example.com/leash.jpg"
        assert item.total_price == 5400

    def test_gateway_failure_yields_no_items(self, materializer, gateway, user):
        gateway.fail["retrieve_checkout_session"] = stripe.APIConnectionError("down")
        order, created = materializer.materialize(checkout_session(), user.id)

        assert created is True
        assert OrderItem.query.filter_by(order_id=order.id).count() == 0

    def test_payment_method_names(self):
        assert payment_method_name({"payment_method_types": ["card"]}) == "credit_card"
        assert payment_method_name({"payment_method_types": ["customer_balance"]}) == "bank_transfer"
        assert payment_method_name({}) == "credit_card"


class TestContactResolution:

    def test_session_shipping_details_win(self, materializer, user):
        cs = checkout_session(shipping_details={
            "name": "Hanako Sato",
            "phone": "080-0000-0000",
            "address": {"postal_code": "530-0001", "state": "Osaka", "city": "Kita", "line1": "1-1"},
        })
        contact = materializer.resolve_contact(cs, cs["metadata"], user.id)

        assert contact == {
            "shipping_name": "Hanako Sato",
            "shipping_postal_code": "530-0001",
            "shipping_address": "Osaka Kita 1-1",
            "shipping_phone": "080-0000-0000",
        }

    def test_metadata_then_profile(self, materializer, user):
        metadata = {"shipping_name": "Gift Recipient"}
        contact = materializer.resolve_contact(checkout_session(), metadata, user.id)

        assert contact["shipping_name"] == "Gift Recipient"
        assert contact["shipping_address"] == "Tokyo Shibuya 1-2-3"
        assert contact["shipping_phone"] == "090-1234-5678"

    def test_placeholder_when_nothing_known(self, materializer):
        contact = materializer.resolve_contact(checkout_session(), {}, "missing-user")
        assert set(contact.values()) == {"-"}


class TestDeferredPayments:

    def test_confirm_pending_only_changes_once(self, materializer, user):
        materializer.materialize(checkout_session(), user.id, status="pending",
                                 payment_status="pending", with_items=False)

        order, changed = materializer.confirm_pending("cs_test_materialize")
        assert changed is True
        assert order.status == "confirmed"
        assert order.confirmed_at is not None

        _, changed_again = materializer.confirm_pending("cs_test_materialize")
        assert changed_again is False

    def test_mark_failed(self, materializer, user):
        materializer.materialize(checkout_session(), user.id, status="pending",
                                 payment_status="pending", with_items=False)

        order, changed = materializer.mark_failed("cs_test_materialize")
        assert changed is True
        assert (order.status, order.payment_status) == ("cancelled", "failed")

    def test_unknown_session(self, materializer):
        assert materializer.confirm_pending("cs_unknown") == (None, False)
