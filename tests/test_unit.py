import asyncio
from decimal import Decimal

import pytest

from storefront import config, models
from storefront.auth import Identity
from storefront.errors import InsufficientStock, InvalidRequest, NotFound
from storefront.orders import OrderWorkflow

from conftest import RecordingNotifier, make_user


def identity_for(user):
    return Identity(id=user.id, username=user.username, role=user.role, email=user.email)


@pytest.fixture
def buyer(db_session):
    return make_user(db_session, "alice", email="a@x.com")


@pytest.fixture
def workflow(db_session, notifier):
    return OrderWorkflow(db_session, notifier, config.get_settings())


def order_count(db):
    return db.query(models.Order).count()


def test_place_order_decrements_stock_and_records_total(db_session, workflow, buyer, product):
    order = asyncio.run(workflow.place_order(identity_for(buyer), product.id, 3))

    db_session.expire_all()
    assert db_session.get(models.Product, product.id).stock == 7
    assert order.quantity == 3
    assert order.status == "reserved"
    assert order.user_id == buyer.id
    assert order.total_price == Decimal("150.00")
    assert order_count(db_session) == 1


def test_total_price_rounded_half_up(db_session, workflow, buyer, category):
    prod = models.Product(name="Socks", price=Decimal("0.35"), stock=5, category_id=category.id)
    db_session.add(prod)
    db_session.commit()

    order = asyncio.run(workflow.place_order(identity_for(buyer), prod.id, 3))
    assert order.total_price == Decimal("1.05")


def test_insufficient_stock_leaves_everything_untouched(db_session, workflow, buyer, product):
    with pytest.raises(InsufficientStock) as exc:
        asyncio.run(workflow.place_order(identity_for(buyer), product.id, 11))

    assert exc.value.message == "Insufficient stock for Runner. Only 10 left."
    assert exc.value.requested == 11
    db_session.expire_all()
    assert db_session.get(models.Product, product.id).stock == 10
    assert order_count(db_session) == 0


def test_missing_product_is_not_found(db_session, workflow, buyer):
    with pytest.raises(NotFound):
        asyncio.run(workflow.place_order(identity_for(buyer), 9999, 1))
    assert order_count(db_session) == 0


@pytest.mark.parametrize("quantity", [0, -2, None, 1.5, True])
def test_invalid_quantity_rejected_every_time(db_session, workflow, buyer, product, quantity):
    for _ in range(2):
        with pytest.raises(InvalidRequest) as exc:
            asyncio.run(workflow.place_order(identity_for(buyer), product.id, quantity))
        assert exc.value.message == "Product ID and a positive quantity are required."
    db_session.expire_all()
    assert db_session.get(models.Product, product.id).stock == 10


def test_missing_product_id_rejected(workflow, buyer):
    with pytest.raises(InvalidRequest):
        asyncio.run(workflow.place_order(identity_for(buyer), None, 1))


def test_notifications_sent_to_buyer_and_owner(workflow, notifier, buyer, product):
    order = asyncio.run(workflow.place_order(identity_for(buyer), product.id, 2))

    recipients = [m["to"] for m in notifier.sent]
    assert recipients == ["a@x.com", "owner@shop.test"]
    confirmation = notifier.sent[0]["body"]
    assert f"Order ID: {order.id}" in confirmation
    assert "Runner" in confirmation
    assert "Quantity: 2" in confirmation
    assert "Total price: $100.00" in confirmation
    assert "Status: reserved" in confirmation
    assert "alice" in notifier.sent[1]["body"]


def test_owner_notification_skipped_when_not_configured(db_session, notifier, buyer, product):
    config.configure(owner_email=None)
    workflow = OrderWorkflow(db_session, notifier, config.get_settings())
    asyncio.run(workflow.place_order(identity_for(buyer), product.id, 1))
    assert [m["to"] for m in notifier.sent] == ["a@x.com"]


def test_notifier_failure_does_not_undo_order(db_session, buyer, product):
    failing = RecordingNotifier()
    failing.fail = True
    workflow = OrderWorkflow(db_session, failing, config.get_settings())

    order = asyncio.run(workflow.place_order(identity_for(buyer), product.id, 4))

    db_session.expire_all()
    assert order.id is not None
    assert db_session.get(models.Product, product.id).stock == 6
    assert order_count(db_session) == 1


def test_delete_order_restores_stock(db_session, workflow, buyer, product):
    ident = identity_for(buyer)
    order = asyncio.run(workflow.place_order(ident, product.id, 3))

    workflow.delete_order(ident, order.id)

    db_session.expire_all()
    assert db_session.get(models.Product, product.id).stock == 10
    assert order_count(db_session) == 0


def test_other_users_order_is_not_found(db_session, workflow, buyer, product):
    order = asyncio.run(workflow.place_order(identity_for(buyer), product.id, 1))
    mallory = identity_for(make_user(db_session, "mallory"))

    with pytest.raises(NotFound):
        workflow.update_order_status(mallory, order.id, "completed")
    with pytest.raises(NotFound):
        workflow.delete_order(mallory, order.id)
    db_session.expire_all()
    assert db_session.get(models.Product, product.id).stock == 9


def test_status_update_allow_list(workflow, buyer, product):
    ident = identity_for(buyer)
    order = asyncio.run(workflow.place_order(ident, product.id, 1))

    with pytest.raises(InvalidRequest):
        workflow.update_order_status(ident, order.id, "shipped")
    updated = workflow.update_order_status(ident, order.id, "cancelled")
    assert updated.status == "cancelled"


def test_cancelling_does_not_restore_stock(db_session, workflow, buyer, product):
    ident = identity_for(buyer)
    order = asyncio.run(workflow.place_order(ident, product.id, 5))
    workflow.update_order_status(ident, order.id, "cancelled")
    db_session.expire_all()
    assert db_session.get(models.Product, product.id).stock == 5


def test_list_orders_scoped_to_owner_unless_admin(db_session, workflow, buyer, product):
    bob = make_user(db_session, "bob")
    admin = make_user(db_session, "boss", role=models.ROLE_ADMIN)
    asyncio.run(workflow.place_order(identity_for(buyer), product.id, 1))
    asyncio.run(workflow.place_order(identity_for(bob), product.id, 1))

    assert [o.user_id for o in workflow.list_orders(identity_for(buyer))] == [buyer.id]
    assert len(workflow.list_orders(identity_for(admin))) == 2


def failing_commit(db):
    def commit():
        db.flush()
        raise RuntimeError("database is locked")
    return commit


def test_failed_commit_rolls_back_placement(db_session, workflow, buyer, product, monkeypatch):
    monkeypatch.setattr(db_session, "commit", failing_commit(db_session))
    with pytest.raises(RuntimeError):
        asyncio.run(workflow.place_order(identity_for(buyer), product.id, 3))
    monkeypatch.undo()

    db_session.commit()
    db_session.expire_all()
    assert db_session.get(models.Product, product.id).stock == 10
    assert order_count(db_session) == 0


def test_failed_commit_rolls_back_deletion(db_session, workflow, buyer, product, monkeypatch):
    ident = identity_for(buyer)
    order = asyncio.run(workflow.place_order(ident, product.id, 3))
    order_id = order.id

    monkeypatch.setattr(db_session, "commit", failing_commit(db_session))
    with pytest.raises(RuntimeError):
        workflow.delete_order(ident, order_id)
    monkeypatch.undo()

    db_session.commit()
    db_session.expire_all()
    assert db_session.get(models.Product, product.id).stock == 7
    assert db_session.get(models.Order, order_id) is not None


def test_deleted_buyer_cannot_order(db_session, workflow, notifier, product):
    ghost = Identity(id=9999, username="ghost", role=models.ROLE_USER, email=None)
    with pytest.raises(NotFound) as exc:
        asyncio.run(workflow.place_order(ghost, product.id, 1))

    assert exc.value.message == "User not found."
    db_session.expire_all()
    assert db_session.get(models.Product, product.id).stock == 10
    assert order_count(db_session) == 0
    assert notifier.sent == []
