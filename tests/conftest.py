import hashlib
import hmac
import json
import time

import pytest
import stripe
from flask_jwt_extended import create_access_token

WEBHOOK_SECRET = "whsec_test_secret"

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "JWT_SECRET_KEY": "test-jwt-secret-key-that-is-long-enough",
    "STRIPE_SECRET_KEY": "sk_test_dummy_key_for_testing",
    "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
    "WEBHOOK_PROCESSING": "inline",
    "MESSAGING_WEBHOOK_URL": "",
    "PUBLIC_SITE_URL": "https://dogparkjp.com",
    "DEFAULT_DAY_PASS_PRICE_ID": "price_day_pass",
}


class FakeGateway:
    """In-memory stand-in for StripeGateway.

    ``fail`` maps a method name to an exception, or to a list of exceptions
    raised one per call until the list is empty.
    """

    configured = True
    currency = "jpy"

    def __init__(self):
        self.calls = []
        self.customers = {}
        self.sessions = {}
        self.subscriptions = {}
        self.payment_intents = {}
        self.payment_methods = {}
        self.fail = {}
        self._counter = 0

    def _next_id(self, prefix):
        self._counter += 1
        return f"{prefix}_{self._counter}"

    def _call(self, _method, /, **kwargs):
        self.calls.append((_method, kwargs))
        error = self.fail.get(_method)
        if isinstance(error, list):
            if error:
                raise error.pop(0)
        elif error is not None:
            raise error

    def calls_to(self, name):
        return [kwargs for call, kwargs in self.calls if call == name]

    def create_customer(self, email, user_id):
        self._call("create_customer", email=email, user_id=user_id)
        customer_id = self._next_id("cus_test")
        self.customers[customer_id] = {"id": customer_id, "email": email,
                                       "metadata": {"userId": user_id}}
        return self.customers[customer_id]

    def delete_customer(self, customer_id):
        self._call("delete_customer", customer_id=customer_id)
        self.customers.pop(customer_id, None)
        return {"id": customer_id, "deleted": True}

    def list_card_payment_methods(self, customer_id):
        self._call("list_card_payment_methods", customer_id=customer_id)
        return list(self.payment_methods.get(customer_id, []))

    def create_recurring_price(self, name, unit_amount, interval, interval_count):
        self._call("create_recurring_price", name=name, unit_amount=unit_amount,
                   interval=interval, interval_count=interval_count)
        return {"id": self._next_id("price_test"), "unit_amount": unit_amount,
                "recurring": {"interval": interval, "interval_count": interval_count}}

    def create_checkout_session(self, params):
        self._call("create_checkout_session", params=params)
        session_id = self._next_id("cs_test")
        return {"id": session_id, "url": f"https://checkout.stripe.com/c/pay/{session_id}"}

    def retrieve_checkout_session(self, session_id, expand_line_items=True):
        self._call("retrieve_checkout_session", session_id=session_id)
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(f"No such checkout.session: '{session_id}'", "id")
        return self.sessions[session_id]

    def retrieve_payment_intent(self, payment_intent_id):
        self._call("retrieve_payment_intent", payment_intent_id=payment_intent_id)
        return self.payment_intents[payment_intent_id]

    def latest_subscription(self, customer_id):
        self._call("latest_subscription", customer_id=customer_id)
        return self.subscriptions.get(customer_id)

    def set_cancel_at_period_end(self, subscription_id, cancel=True):
        self._call("set_cancel_at_period_end", subscription_id=subscription_id, cancel=cancel)
        for subscription in self.subscriptions.values():
            if subscription and subscription["id"] == subscription_id:
                subscription["cancel_at_period_end"] = cancel
                return subscription
        raise stripe.InvalidRequestError(f"No such subscription: '{subscription_id}'", "id")

    def pause_collection(self, subscription_id, behavior="void"):
        self._call("pause_collection", subscription_id=subscription_id, behavior=behavior)
        for subscription in self.subscriptions.values():
            if subscription and subscription["id"] == subscription_id:
                subscription["pause_collection"] = {"behavior": behavior}
                return subscription
        raise stripe.InvalidRequestError(f"No such subscription: '{subscription_id}'", "id")


def stripe_subscription(subscription_id="sub_test_1", status="active", price_id="price_monthly",
                        period_start=1700000000, period_end=1702592000, brand="visa", last4="4242",
                        cancel_at_period_end=False):
    """Subscription payload shaped like Stripe's list response item."""
    payment_method = None
    if brand or last4:
        payment_method = {"id": "pm_test_1", "card": {"brand": brand, "last4": last4}}
    return {
        "id": subscription_id,
        "status": status,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "cancel_at_period_end": cancel_at_period_end,
        "default_payment_method": payment_method,
        "items": {"data": [{"price": {"id": price_id}}]},
    }


def stripe_signature(payload, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(gateway):
    """Create and configure a new app instance for each test."""
    from parkpay.factory import create_app
    from parkpay.database import db

    app = create_app(TEST_CONFIG)
    app.extensions["stripe_gateway"] = gateway
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def user(app):
    from parkpay.database import db
    from parkpay.models import User

    user = User(id="user-1", email="taro@example.com", name="Taro Yamada",
                phone="090-1234-5678", postal_code="150-0001", address="Tokyo Shibuya 1-2-3")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def customer(app, user):
    """The user already mapped to a Stripe customer with an empty subscription row."""
    from parkpay.database import db
    from parkpay.models import PaymentCustomer, Subscription

    db.session.add(PaymentCustomer(user_id=user.id, external_customer_id="cus_existing"))
    db.session.add(Subscription(customer_id="cus_existing", status="not_started"))
    db.session.commit()
    return "cus_existing"


@pytest.fixture
def auth_headers(app, user):
    token = create_access_token(identity=user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def products(app):
    from parkpay.database import db
    from parkpay.models import Product

    rows = [
        Product(id="prod-leash", name="Leash", price=3000,
                image_url='["https://cdn.example.com/leash.jpg"]'),
        Product(id="prod-treats", name="Treats", price=1200, image_url="https://cdn.example.com/treats.jpg"),
        Product(id="prod-bowl", name="Bowl", price=1005, image_url=None),
    ]
    db.session.add_all(rows)
    db.session.commit()
    return {row.id: row for row in rows}


@pytest.fixture
def add_cart_item(app, user, products):
    from parkpay.database import db
    from parkpay.models import CartItem

    counter = {"n": 0}

    def _add(product_id, quantity=1, user_id=None):
        counter["n"] += 1
        item = CartItem(id=f"cart-{counter['n']}", user_id=user_id or user.id,
                        product_id=product_id, quantity=quantity)
        db.session.add(item)
        db.session.commit()
        return item.id

    return _add


@pytest.fixture
def post_event(client):
    """POST a signed Stripe event to /webhook."""

    def _post(event, secret=WEBHOOK_SECRET, signature=None):
        payload = json.dumps(event)
        header = signature if signature is not None else stripe_signature(payload, secret)
        return client.post("/webhook", data=payload, content_type="application/json",
                           headers={"Stripe-Signature": header})

    return _post
