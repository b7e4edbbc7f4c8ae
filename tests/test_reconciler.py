# -*- coding: utf-8 -*-

import pytest
import stripe
from sqlalchemy import select

from conftest import stripe_subscription
from parkpay.database import db
from parkpay.errors import GatewayError
from parkpay.models import Subscription
from parkpay.services.reconciler import SubscriptionReconciler, subscription_state


def raw_row(customer_id):
    table = Subscription.__table__
    return db.session.execute(select(table).where(table.c.customer_id == customer_id)).one()


class TestSubscriptionReconciler:

    def test_full_replace_is_byte_identical_on_repeat(self, app, gateway, customer):
        gateway.subscriptions[customer] = stripe_subscription()
        reconciler = SubscriptionReconciler(gateway, db.session)

        reconciler.sync(customer)
        first = tuple(raw_row(customer))
        reconciler.sync(customer)
        second = tuple(raw_row(customer))

        assert first == second
        assert Subscription.query.filter_by(customer_id=customer).count() == 1

    def test_creates_row_for_unknown_customer(self, app, gateway):
        gateway.subscriptions["cus_new"] = stripe_subscription(status="trialing")
        row = SubscriptionReconciler(gateway, db.session).sync("cus_new")

        assert row.status == "trialing"
        assert row.current_period_end == 1702592000

    def test_no_upstream_subscription_resets_to_not_started(self, app, gateway, customer):
        reconciler = SubscriptionReconciler(gateway, db.session)
        gateway.subscriptions[customer] = stripe_subscription()
        reconciler.sync(customer)

        gateway.subscriptions[customer] = None
        row = reconciler.sync(customer)

        assert row.status == "not_started"
        assert row.subscription_id is None
        assert row.payment_method_last4 is None
        assert row.cancel_at_period_end is False

    def test_missing_payment_method_clears_card(self, app, gateway, customer):
        reconciler = SubscriptionReconciler(gateway, db.session)
        gateway.subscriptions[customer] = stripe_subscription()
        reconciler.sync(customer)

        gateway.subscriptions[customer] = stripe_subscription(brand=None, last4=None, status="canceled")
        row = reconciler.sync(customer)

        assert row.status == "canceled"
        assert row.payment_method_brand is None
        assert row.payment_method_last4 is None

    def test_gateway_failure(self, app, gateway, customer):
        gateway.fail["latest_subscription"] = stripe.APIConnectionError("timeout")
        with pytest.raises(GatewayError):
            SubscriptionReconciler(gateway, db.session).sync(customer)
        assert Subscription.query.filter_by(customer_id=customer).one().status == "not_started"


class TestSubscriptionState:

    def test_period_bounds_from_first_item(self):
        subscription = stripe_subscription(period_start=None, period_end=None)
        subscription["items"]["data"][0].update(current_period_start=1, current_period_end=2)

        state = subscription_state(subscription)
        assert (state["current_period_start"], state["current_period_end"]) == (1, 2)

    def test_unexpanded_payment_method_has_no_card(self):
        subscription = stripe_subscription()
        subscription["default_payment_method"] = "pm_123"

        state = subscription_state(subscription)
        assert state["payment_method_brand"] is None
        assert state["payment_method_last4"] is None

    def test_none_is_not_started(self):
        assert subscription_state(None)["status"] == "not_started"


class TestCancelSubscription:

    def test_cancel_at_period_end(self, client, auth_headers, gateway, customer):
        gateway.subscriptions[customer] = stripe_subscription()
        SubscriptionReconciler(gateway, db.session).sync(customer)

        response = client.post("/subscription/cancel", json={}, headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data["subscription_id"] == "sub_test_1"
        assert data["subscription"]["cancel_at_period_end"] is True
        assert gateway.calls_to("set_cancel_at_period_end") == [{"subscription_id": "sub_test_1", "cancel": True}]

    def test_cannot_cancel_someone_elses_subscription(self, client, auth_headers, gateway, customer):
        gateway.subscriptions[customer] = stripe_subscription()
        SubscriptionReconciler(gateway, db.session).sync(customer)

        response = client.post("/subscription/cancel", json={"subscription_id": "sub_other"},
                               headers=auth_headers)
        assert response.status_code == 404
        assert gateway.calls_to("set_cancel_at_period_end") == []

    def test_no_subscription(self, client, auth_headers, customer):
        response = client.post("/subscription/cancel", json={}, headers=auth_headers)
        assert response.status_code == 404
        assert response.get_json() == {"error": "No subscription found for this user"}


class TestPauseSubscription:

    def test_pause_voids_collection_and_resyncs(self, client, auth_headers, gateway, customer):
        gateway.subscriptions[customer] = stripe_subscription()
        SubscriptionReconciler(gateway, db.session).sync(customer)

        response = client.post("/subscription/pause", json={}, headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data["message"] == "Subscription has been paused"
        assert data["subscription"]["pause_collection_behavior"] == "void"
        assert gateway.calls_to("pause_collection") == [{"subscription_id": "sub_test_1", "behavior": "void"}]

    def test_already_paused(self, client, auth_headers, gateway, customer):
        subscription = stripe_subscription()
        subscription["pause_collection"] = {"behavior": "void"}
        gateway.subscriptions[customer] = subscription
        SubscriptionReconciler(gateway, db.session).sync(customer)

        response = client.post("/subscription/pause", json={}, headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()["message"] == "Subscription is already paused"
        assert gateway.calls_to("pause_collection") == []

    def test_canceled_subscription_cannot_be_paused(self, client, auth_headers, gateway, customer):
        gateway.subscriptions[customer] = stripe_subscription(status="canceled")
        SubscriptionReconciler(gateway, db.session).sync(customer)

        response = client.post("/subscription/pause", json={}, headers=auth_headers)
        assert response.status_code == 404
        assert response.get_json() == {"error": "No active subscription found for this user"}

    def test_gateway_failure(self, client, auth_headers, gateway, customer):
        gateway.subscriptions[customer] = stripe_subscription()
        SubscriptionReconciler(gateway, db.session).sync(customer)
        gateway.fail["pause_collection"] = stripe.APIConnectionError("timeout")

        response = client.post("/subscription/pause", json={}, headers=auth_headers)
        assert response.status_code == 500
        assert response.get_json() == {"error": "Failed to pause subscription"}
