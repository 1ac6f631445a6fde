import json
from decimal import Decimal
from io import BytesIO

import pytest

from goldshop.models import AdminNotification, ManualPayment, Order, Product
from goldshop.services.gateway import GatewaySession

SID = "cs_test_a1B2c3D4e5F6g7H8"
PI = "pi_3NxYzAbCdEfGh12"
GUEST = {"X-Session-Id": "abc123"}


@pytest.fixture
def admin(make_user, login):
    user = make_user(phone="+60100000000", role="admin", name="Admin")
    login(user)
    return user


def _fresh(db, model, pk):
    return db.session.get(model, pk, populate_existing=True)


# -----------------
# Sync endpoint
# -----------------

def test_sync_requires_admin_or_cron(client, gateway):
    assert client.post("/payments/sync").status_code == 401
    assert client.post("/payments/sync", headers={"X-Cron-Secret": "wrong"}).status_code == 401


def test_sync_rejects_customers(client, gateway, make_user, login):
    login(make_user())
    assert client.post("/payments/sync").status_code == 403


def test_sync_with_cron_secret_returns_tally(db, client, gateway, make_order):
    order = make_order(stripe_session_id=SID)
    gateway.sessions[SID] = GatewaySession(SID, "complete", "paid", payment_intent=PI)

    resp = client.post("/payments/sync", headers={"X-Cron-Secret": "cron-test"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert set(body) == {"message", "results"}
    assert {k: body["results"][k] for k in ("total", "updated", "failed", "skipped")} == \
        {"total": 1, "updated": 1, "failed": 0, "skipped": 0}
    assert body["results"]["details"][0]["order_number"] == order.order_number
    assert _fresh(db, Order, order.id).payment_status == "completed"


def test_sync_as_admin(client, gateway, admin):
    resp = client.post("/payments/sync")
    assert resp.status_code == 200
    assert resp.get_json()["results"]["total"] == 0


# -----------------
# Webhook
# -----------------

def _event(type_, obj):
    return json.dumps({"type": type_, "data": {"object": obj}})


def test_webhook_completes_pending_order(db, client, gateway, make_order):
    order = make_order(stripe_session_id=SID)
    payload = _event("checkout.session.completed", {
        "id": SID, "status": "complete", "payment_status": "paid", "payment_intent": PI,
        "metadata": {"orderId": order.id},
    })
    resp = client.post("/payments/webhook", data=payload, headers={"Stripe-Signature": "valid"})
    assert resp.status_code == 200 and resp.get_json()["updated"] is True
    fresh = _fresh(db, Order, order.id)
    assert (fresh.payment_status, fresh.stripe_payment_id) == ("completed", PI)


def test_expired_webhook_never_overrides_completed(db, client, gateway, make_order):
    order = make_order(stripe_session_id=SID, payment_status="completed", order_status="processing")
    payload = _event("checkout.session.expired", {
        "id": SID, "status": "expired", "payment_status": "unpaid", "metadata": {"orderId": order.id},
    })
    resp = client.post("/payments/webhook", data=payload, headers={"Stripe-Signature": "valid"})
    assert resp.status_code == 200 and resp.get_json()["updated"] is False
    assert _fresh(db, Order, order.id).payment_status == "completed"


def test_webhook_signature_is_checked(client, gateway):
    resp = client.post("/payments/webhook", data="{}", headers={"Stripe-Signature": "forged"})
    assert resp.status_code == 400


# -----------------
# Cart -> checkout -> gateway
# -----------------

def test_cart_checkout_and_gateway_session(db, client, gateway, set_price, make_product):
    set_price("916", "300.00")
    ring = make_product(name="Ring", weight="2.5", fee="10.00", stock=5)

    resp = client.post("/cart/items", json={"product_id": ring.id, "quantity": 3}, headers=GUEST)
    assert resp.status_code == 201
    cart = client.get("/cart", headers=GUEST).get_json()
    assert cart["total"] == 2280.00 and cart["needs_refresh"] is False

    resp = client.post("/checkout", headers=GUEST, json={
        "full_name": "Siti", "phone_number": "+60123456789", "payment_method": "gateway_fpx"})
    assert resp.status_code == 201
    order = resp.get_json()["order"]
    assert order["order_number"] == "JJ-00001" and order["total_amount"] == 2280.00
    assert _fresh(db, Product, ring.id).stock == 2

    resp = client.post(f"/payments/checkout/{order['id']}", json={})
    assert resp.status_code == 200
    created = gateway.calls_to("create_checkout_session")[0][1]
    assert created["payment_method_types"] == ["fpx"]
    assert created["amount_cents"] == 228000
    assert _fresh(db, Order, order["id"]).stripe_session_id == resp.get_json()["session_id"]


def test_stale_cart_must_be_refreshed(db, client, set_price, make_product):
    set_price("916", "300.00")
    ring = make_product(name="Ring", stock=5)
    client.post("/cart/items", json={"product_id": ring.id}, headers=GUEST)
    set_price("916", "315.00")   # +5%

    checkout = {"full_name": "Siti", "phone_number": "+60123456789", "payment_method": "e_wallet"}
    resp = client.post("/checkout", json=checkout, headers=GUEST)
    assert resp.status_code == 409
    body = resp.get_json()
    assert body["error"] == "stale_prices" and "Ring" in body["message"]
    assert Order.query.count() == 0

    assert client.post("/cart/refresh", headers=GUEST).get_json()["refreshed"] == 1
    assert client.post("/checkout", json=checkout, headers=GUEST).status_code == 201


def test_insufficient_stock_over_http(client, set_price, make_product):
    set_price("916", "300.00")
    ring = make_product(name="Ring", stock=1)
    client.post("/cart/items", json={"product_id": ring.id, "quantity": 2}, headers=GUEST)
    resp = client.post("/checkout", headers=GUEST, json={
        "full_name": "Siti", "phone_number": "+60123456789", "payment_method": "gateway_card"})
    assert resp.status_code == 409
    assert resp.get_json()["shortages"][0]["product_name"] == "Ring"


# -----------------
# E-wallet + admin
# -----------------

def test_receipt_upload_preview_and_verify(db, client, make_order, make_user, login):
    order = make_order(payment_method="e_wallet")
    resp = client.post(f"/payments/ewallet/{order.id}/receipt",
                       data={"receipt": (BytesIO(b"%PDF-1.4 receipt"), "receipt.pdf")},
                       content_type="multipart/form-data", headers=GUEST)
    assert resp.status_code == 201
    payment_id = resp.get_json()["manual_payment"]["id"]
    assert resp.get_json()["manual_payment"]["receipt_path"].startswith("guest-abc123/")

    assert client.get(f"/admin/manual-payments/{payment_id}/preview").status_code == 401

    admin = make_user(phone="+60100000000", role="admin")
    login(admin)
    link = client.get(f"/admin/manual-payments/{payment_id}/preview").get_json()
    path = link["url"].split("/payments/", 1)[1]
    served = client.get(f"/payments/{path}")
    assert served.status_code == 200 and served.data == b"%PDF-1.4 receipt"

    resp = client.post(f"/admin/manual-payments/{payment_id}/verify")
    assert resp.status_code == 200
    assert resp.get_json()["order"]["payment_status"] == "completed"
    assert _fresh(db, ManualPayment, payment_id).verified_by == admin.id

    assert client.post(f"/admin/manual-payments/{payment_id}/verify").status_code == 409


def test_admin_cancel_restores_stock(db, client, admin, make_product, make_order):
    from goldshop.models import OrderItem
    ring = make_product(stock=1)
    order = make_order()
    db.session.add(OrderItem(order_id=order.id, product_id=ring.id, product_name="Ring", quantity=2))
    db.session.commit()

    resp = client.post(f"/admin/orders/{order.id}/cancel")
    assert resp.status_code == 200
    assert _fresh(db, Order, order.id).order_status == "cancelled"
    assert _fresh(db, Product, ring.id).stock == 3
    assert client.post(f"/admin/orders/{order.id}/cancel").status_code == 409


def test_cancel_after_failed_payment_does_not_restock_twice(db, client, admin, make_product, make_order):
    from goldshop.models import OrderItem
    ring = make_product(stock=3)
    order = make_order(payment_status="failed")
    db.session.add(OrderItem(order_id=order.id, product_id=ring.id, product_name="Ring", quantity=2))
    db.session.commit()

    assert client.post(f"/admin/orders/{order.id}/cancel").status_code == 200
    assert _fresh(db, Product, ring.id).stock == 3


def test_notifications_inbox(db, client, admin):
    db.session.add(AdminNotification(type="out_of_stock", title="Product Out of Stock", message="Ring"))
    db.session.commit()

    body = client.get("/admin/notifications?unread=1").get_json()
    assert body["unread"] == 1
    note_id = body["notifications"][0]["id"]
    assert client.post(f"/admin/notifications/{note_id}/read").get_json()["notification"]["is_read"] is True
    assert client.get("/admin/notifications").get_json()["unread"] == 0


# -----------------
# OTP sign-in
# -----------------

def test_otp_sign_in_flow(app, client):
    sent = []
    app.extensions["otp_sender"] = lambda phone, message: sent.append(message)

    assert client.post("/auth/otp/request", json={"phone_number": "0123456789"}).status_code == 200
    code = sent[-1].split(": ")[1][:6]
    resp = client.post("/auth/otp/verify", json={"phone_number": "0123456789", "otp_code": code,
                                                  "full_name": "Aminah"})
    assert resp.status_code == 200
    assert resp.get_json()["is_new_user"] is True
    assert client.get("/auth/me").get_json()["user"]["full_name"] == "Aminah"

    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").get_json()["user"] is None


def test_unknown_route_is_json(client):
    resp = client.get("/nope")
    assert resp.status_code == 404 and resp.get_json()["ok"] is False
