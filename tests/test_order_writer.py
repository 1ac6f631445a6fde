import re
from decimal import Decimal

import pytest

from goldshop.errors import InsufficientStock, StalePrices, ValidationError
from goldshop.models import AdminNotification, CartItem, Order, PreOrder, Product
from goldshop.services import notifications
from goldshop.services.notifications import Notifier
from goldshop.services.order_writer import CheckoutRequest, allocate_order_number, place_order
from goldshop.services.pricing import PriceTable


PRICES = PriceTable({"916": Decimal("300.00")})


def _checkout(method="gateway_fpx"):
    return CheckoutRequest(full_name="Siti", phone_number="+60123456789", payment_method=method)


def _quiet():
    return Notifier(sleep=lambda s: None)


def test_order_is_written_with_lines_and_stock_moves(db, make_product, add_to_cart):
    ring = make_product(name="Ring", stock=5)
    item = add_to_cart(ring, quantity=2)

    order = place_order(_checkout(), [item], PRICES, notifier=_quiet())

    assert order.order_number == "JJ-00001"
    assert order.total_amount == Decimal("1520.00")
    assert order.payment_status == "pending" and order.order_status == "pending"
    assert [(i.product_name, i.quantity, i.subtotal) for i in order.items] == [("Ring", 2, Decimal("1520.00"))]
    assert db.session.get(Product, ring.id, populate_existing=True).stock == 3
    assert CartItem.query.count() == 0


def test_sequence_numbers_increase(make_product, add_to_cart):
    ring = make_product(stock=5)
    first = place_order(_checkout(), [add_to_cart(ring)], PRICES, notifier=_quiet())
    second = place_order(_checkout(), [add_to_cart(ring)], PRICES, notifier=_quiet())
    assert (first.order_number, second.order_number) == ("JJ-00001", "JJ-00002")


def test_number_falls_back_to_timestamp_when_sequence_fails(db):
    def broken():
        raise RuntimeError("sequence table locked")
    assert re.match(r"^JJ-\d{13}$", allocate_order_number(allocator=broken))


def test_fallback_number_still_places_order(make_product, add_to_cart):
    def broken():
        raise RuntimeError("sequence table locked")
    order = place_order(_checkout(), [add_to_cart(make_product())], PRICES,
                        allocator=broken, notifier=_quiet())
    assert re.match(r"^JJ-\d{13}$", order.order_number)


def test_stale_price_blocks_checkout(db, make_product, add_to_cart):
    ring = make_product(stock=5)
    item = add_to_cart(ring, snapshot="280.00")
    with pytest.raises(StalePrices):
        place_order(_checkout(), [item], PRICES, notifier=_quiet())
    assert Order.query.count() == 0
    assert db.session.get(Product, ring.id).stock == 5


def test_stock_gate_blocks_checkout(make_product, add_to_cart):
    a = make_product(name="A", stock=2)
    b = make_product(name="B", stock=0)
    with pytest.raises(InsufficientStock) as exc:
        place_order(_checkout(), [add_to_cart(a), add_to_cart(b)], PRICES, notifier=_quiet())
    assert [s["product_name"] for s in exc.value.shortages] == ["B"]
    assert Order.query.count() == 0


@pytest.mark.parametrize("method", ["", "cash"])
def test_payment_method_is_validated(make_product, add_to_cart, method):
    with pytest.raises(ValidationError):
        place_order(_checkout(method), [add_to_cart(make_product())], PRICES, notifier=_quiet())


def test_empty_cart_is_rejected():
    with pytest.raises(ValidationError):
        place_order(_checkout(), [], PRICES, notifier=_quiet())


def test_preorder_deposit_and_notification(make_product, add_to_cart):
    bangle = make_product(name="Bangle", stock=5, is_preorder=True, deposit="200.00")
    order = place_order(_checkout(), [add_to_cart(bangle, quantity=2)], PRICES, notifier=_quiet())

    po = PreOrder.query.filter_by(order_id=order.id).one()
    assert po.deposit_paid == Decimal("400.00")
    assert po.balance_due == Decimal("1120.00")
    assert AdminNotification.query.filter_by(type="new_pre_order", order_id=order.id).count() == 1


def test_last_unit_raises_out_of_stock_notification(make_product, add_to_cart):
    ring = make_product(name="Ring", stock=1)
    order = place_order(_checkout(), [add_to_cart(ring)], PRICES, notifier=_quiet())
    note = AdminNotification.query.filter_by(type="out_of_stock").one()
    assert note.product_id == ring.id and note.order_id == order.id


def test_notification_failure_does_not_undo_order(monkeypatch, make_product, add_to_cart):
    def boom(**kw):
        raise RuntimeError("notifications table unavailable")
    monkeypatch.setattr(notifications, "AdminNotification", boom)

    ring = make_product(name="Ring", stock=1)
    order = place_order(_checkout(), [add_to_cart(ring)], PRICES, notifier=_quiet())

    assert Order.query.filter_by(id=order.id).count() == 1


def test_stock_reread_failure_does_not_fail_placed_order(monkeypatch, make_product, add_to_cart):
    from goldshop.services import order_writer

    def unreadable(ids):
        raise RuntimeError("replica lagging")
    monkeypatch.setattr(order_writer, "read_stock", unreadable)

    bangle = make_product(name="Bangle", stock=1, is_preorder=True, deposit="200.00")
    order = place_order(_checkout(), [add_to_cart(bangle)], PRICES, notifier=_quiet())

    assert Order.query.filter_by(id=order.id).count() == 1
    assert AdminNotification.query.filter_by(type="new_pre_order", order_id=order.id).count() == 1
    assert AdminNotification.query.filter_by(type="out_of_stock").count() == 0


def test_variants_are_stored_as_a_label(db, make_product, add_to_cart):
    ring = make_product(stock=2)
    item = add_to_cart(ring, variants={"size": {"name": "Size", "value": "5cm"},
                                       "color": {"name": "Color", "value": "Gold"}})
    assert item.variant_label() == "Size: 5cm, Color: Gold"

    order = place_order(_checkout(), [item], PRICES, notifier=_quiet())
    assert order.items[0].variant_selection == "Size: 5cm, Color: Gold"
