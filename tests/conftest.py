from datetime import datetime
from decimal import Decimal

import pytest
from flask import g

from goldshop import create_app
from goldshop.config import TestConfig
from goldshop.extensions import db as _db
from goldshop.models import CartItem, GoldPrice, Order, Product, User
from goldshop.services.gateway import GatewayIntent, GatewaySession, validate_payment_intent_id, validate_session_id


class FakeGateway:
    """In-memory stand-in for StripeGateway; records every call."""

    def __init__(self):
        self.sessions: dict[str, GatewaySession] = {}
        self.intents: dict[str, GatewayIntent] = {}
        self.sessions_by_intent: dict[str, GatewaySession] = {}
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self.created = 0

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            from goldshop.errors import GatewayError
            raise GatewayError(f"{name} unavailable")

    def calls_to(self, name):
        return [c for c in self.calls if c[0] == name]

    def retrieve_session(self, session_id):
        validate_session_id(session_id)
        self._call("retrieve_session", session_id)
        return self.sessions[session_id]

    def retrieve_payment_intent(self, intent_id):
        validate_payment_intent_id(intent_id)
        self._call("retrieve_payment_intent", intent_id)
        return self.intents[intent_id]

    def search_payment_intents(self, order_id, order_number):
        self._call("search_payment_intents", order_id, order_number)
        return [pi for pi in self.intents.values()
                if pi.metadata.get("orderId") == order_id or pi.metadata.get("orderNumber") == order_number]

    def find_session_for_intent(self, intent_id):
        self._call("find_session_for_intent", intent_id)
        return self.sessions_by_intent.get(intent_id)

    def create_checkout_session(self, **kw):
        self._call("create_checkout_session", kw)
        self.created += 1
        sid = f"cs_test_{'a' * 20}{self.created:04d}"
        session = GatewaySession(id=sid, status="open", payment_status="unpaid",
                                 url=f"https://checkout.stripe.com/c/pay/{sid}#frag",
                                 metadata={"orderId": kw["order_id"], "orderNumber": kw["order_number"]})
        self.sessions[sid] = session
        return session

    def construct_event(self, payload, signature, secret):
        import json
        self._call("construct_event", signature)
        if signature != "valid":
            from goldshop.errors import ValidationError
            raise ValidationError("Invalid webhook payload: bad signature")
        return json.loads(payload)


@pytest.fixture
def app(tmp_path):
    class Cfg(TestConfig):
        RECEIPT_FOLDER = str(tmp_path / "receipts")

    app = create_app(Cfg)
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    fake = FakeGateway()
    app.extensions["gateway"] = fake
    return fake


# -----------------
# Factories
# -----------------

@pytest.fixture
def make_user(db):
    def _make(phone="+60111111111", role="customer", name="Test User"):
        user = User(phone_number=phone, full_name=name, role=role)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def login(client):
    def _login(user):
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True
        # the app context outlives requests here, so drop any user Flask-Login cached on g
        g.pop("_login_user", None)
    return _login


@pytest.fixture
def set_price(db):
    def _set(gold_type="916", price="300.00"):
        row = db.session.get(GoldPrice, gold_type)
        if row is None:
            row = GoldPrice(gold_type=gold_type, price_per_gram=Decimal(price))
            db.session.add(row)
        else:
            row.price_per_gram = Decimal(price)
        db.session.commit()
        return row
    return _set


@pytest.fixture
def make_product(db):
    def _make(name="Ring", gold_type="916", weight="2.5", fee="10.00", stock=5,
              is_preorder=False, deposit=None):
        p = Product(name=name, gold_type=gold_type, weight_grams=Decimal(weight),
                    labour_fee=Decimal(fee), stock=stock, is_preorder=is_preorder,
                    preorder_deposit=Decimal(deposit) if deposit is not None else None)
        db.session.add(p)
        db.session.commit()
        return p
    return _make


@pytest.fixture
def add_to_cart(db):
    def _add(product, quantity=1, snapshot="300.00", session_id="guest-1", user_id=None, variants=None):
        item = CartItem(product=product, product_id=product.id, quantity=quantity,
                        selected_variants=variants,
                        gold_price_snapshot=Decimal(snapshot), locked_at=datetime.utcnow(),
                        user_id=user_id, session_id=None if user_id else session_id)
        db.session.add(item)
        db.session.commit()
        return item
    return _add


@pytest.fixture
def make_order(db):
    counter = {"n": 0}

    def _make(payment_method="gateway_fpx", payment_status="pending", order_status="pending",
              total="100.00", **fields):
        counter["n"] += 1
        order = Order(order_number=fields.pop("order_number", f"JJ-{counter['n']:05d}"),
                      full_name="Siti", phone_number="+60123456789",
                      total_amount=Decimal(total), payment_method=payment_method,
                      payment_status=payment_status, order_status=order_status, **fields)
        db.session.add(order)
        db.session.commit()
        return order
    return _make
