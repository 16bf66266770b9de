from datetime import datetime
from decimal import Decimal

import pytest

from digital_store.catalog_service import ProductService
from digital_store.exceptions import (
    InsufficientStock,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
    PermissionDenied,
)
from digital_store.models import Category, Order, OrderStatus, Product, Role, User
from digital_store.order_service import OrderService
from digital_store.repositories import ProductRepository
from digital_store.schemas import OrderFilter, ProductIn, UserUpdate
from digital_store.user_service import UserService


@pytest.fixture
def service(db, clock):
    return OrderService(db, clock=clock)


def stock(db, product_id):
    return ProductService(db).get_product(product_id).quantity


def set_stock(db, product, quantity):
    ProductService(db).update_product(product.id, ProductIn(
        name=product.name, brand=product.brand, category_id=product.category_id,
        price=product.price, quantity=quantity,
    ))


# Creation

def test_create_order_snapshots_total_and_takes_stock(db, service, users, product):
    order = service.create_order(users["alice"].id, product.id, 3)

    assert order.total_price == Decimal("15.00")
    assert order.status == OrderStatus.NEW
    assert order.quantity == 3
    assert order.created_at == order.updated_at
    assert stock(db, product.id) == 7


def test_create_order_denormalizes_user_and_product(service, users, product):
    order = service.create_order(users["alice"].id, product.id, 1)

    assert order.user_email == "alice@example.com"
    assert order.user_full_name == "Alice Smith"
    assert order.product_name == "ThinkPad X1"
    assert order.product_brand == "Lenovo"
    assert order.unit_price == Decimal("5.00")


def test_create_order_with_more_than_stock_fails(db, service, users, product):
    set_stock(db, product, 2)

    with pytest.raises(InsufficientStock) as err:
        service.create_order(users["alice"].id, product.id, 5)

    assert err.value.available == 2
    assert "Available: 2" in err.value.message
    assert stock(db, product.id) == 2
    assert service.list_orders() == []


def test_create_order_can_take_the_last_unit(db, service, users, product):
    service.create_order(users["alice"].id, product.id, 10)
    assert stock(db, product.id) == 0

    with pytest.raises(InsufficientStock):
        service.create_order(users["bob"].id, product.id, 1)
    assert stock(db, product.id) == 0


@pytest.mark.parametrize("quantity", [0, -1])
def test_create_order_rejects_non_positive_quantity(db, service, users, product, quantity):
    with pytest.raises(InvalidQuantity):
        service.create_order(users["alice"].id, product.id, quantity)
    assert stock(db, product.id) == 10


def test_create_order_unknown_user_or_product(service, users, product):
    with pytest.raises(NotFound):
        service.create_order(9999, product.id, 1)
    with pytest.raises(NotFound):
        service.create_order(users["alice"].id, 9999, 1)


def test_total_is_not_recomputed_when_price_changes(db, service, users, product):
    order = service.create_order(users["alice"].id, product.id, 2)
    ProductService(db).update_product(product.id, ProductIn(
        name=product.name, brand=product.brand, category_id=product.category_id,
        price=Decimal("8.00"), quantity=8,
    ))

    reread = service.get_order(order.id)
    assert reread.total_price == Decimal("10.00")
    assert reread.unit_price == Decimal("8.00")


def test_stale_stock_read_is_caught_by_conditional_update(file_session_factory):
    Session = file_session_factory

    setup = Session()
    setup.add(User(email="c@example.com", role=Role.CLIENT, password_hash="x", created_at=datetime.now()))
    setup.add(Product(id=1, name="Mouse", category=Category(name="Mice"), price=Decimal("1.00"), quantity=5))
    setup.commit()
    setup.close()

    first, second = Session(), Session()
    assert first.get(Product, 1).quantity == 5  # cached by the first request

    assert ProductRepository(second).decrement_stock(1, 4)
    second.commit()

    with pytest.raises(InsufficientStock) as err:
        OrderService(first).create_order(1, 1, 3)
    assert err.value.available == 1

    first.close()
    second.close()


def test_stale_cancel_loses_to_concurrent_cancel(file_session_factory):
    Session = file_session_factory

    setup = Session()
    setup.add(User(email="c@example.com", role=Role.CLIENT, password_hash="x", created_at=datetime.now()))
    setup.add(Product(id=1, name="Mouse", category=Category(name="Mice"), price=Decimal("1.00"), quantity=5))
    setup.commit()
    order_id = OrderService(setup).create_order(1, 1, 3).id
    setup.close()

    first, second = Session(), Session()
    assert first.get(Order, order_id).status == OrderStatus.NEW  # cached by the first request

    OrderService(second).update_status(order_id, OrderStatus.CANCELLED, "c@example.com")

    with pytest.raises(InvalidTransition, match="changed by someone else"):
        OrderService(first).update_status(order_id, OrderStatus.CANCELLED, "c@example.com")

    check = Session()
    assert check.get(Product, 1).quantity == 5
    assert check.get(Order, order_id).status == OrderStatus.CANCELLED

    check.close()
    first.close()
    second.close()


# Status changes

def test_owner_cancels_and_stock_returns(db, service, users, product):
    order = service.create_order(users["alice"].id, product.id, 3)

    cancelled = service.update_status(order.id, OrderStatus.CANCELLED, "alice@example.com")

    assert cancelled.status == OrderStatus.CANCELLED
    assert stock(db, product.id) == 10


def test_cancel_restores_exact_quantity_after_several_moves(db, service, users, product):
    order = service.create_order(users["alice"].id, product.id, 4)
    service.update_status(order.id, OrderStatus.ACCEPTED, "manager@example.com")
    service.update_status(order.id, OrderStatus.IN_TRANSIT, "manager@example.com")
    service.update_status(order.id, OrderStatus.ACCEPTED, "root@example.com")
    assert stock(db, product.id) == 6

    service.update_status(order.id, OrderStatus.CANCELLED, "root@example.com")

    assert stock(db, product.id) == 10


def test_status_change_bumps_updated_at_only(service, users, product, clock):
    order = service.create_order(users["alice"].id, product.id, 1)
    clock.advance(hours=2)

    accepted = service.update_status(order.id, OrderStatus.ACCEPTED, "manager@example.com")

    assert accepted.created_at == order.created_at
    assert accepted.updated_at == datetime(2024, 3, 1, 14, 0, 0)


def test_manager_may_jump_straight_to_delivered(db, service, users, product):
    order = service.create_order(users["alice"].id, product.id, 1)

    delivered = service.update_status(order.id, OrderStatus.DELIVERED, "manager@example.com")

    assert delivered.status == OrderStatus.DELIVERED
    assert stock(db, product.id) == 9


@pytest.mark.parametrize("actor", ["alice@example.com", "manager@example.com", "root@example.com"])
@pytest.mark.parametrize("target", list(OrderStatus))
def test_delivered_order_is_frozen(service, users, product, actor, target):
    order = service.create_order(users["alice"].id, product.id, 1)
    service.update_status(order.id, OrderStatus.DELIVERED, "manager@example.com")

    with pytest.raises(InvalidTransition, match="delivered"):
        service.update_status(order.id, target, actor)


@pytest.mark.parametrize("actor", ["alice@example.com", "manager@example.com", "root@example.com"])
def test_cancelled_order_is_frozen(db, service, users, product, actor):
    order = service.create_order(users["alice"].id, product.id, 2)
    service.update_status(order.id, OrderStatus.CANCELLED, "alice@example.com")

    with pytest.raises(InvalidTransition, match="cancelled"):
        service.update_status(order.id, OrderStatus.CANCELLED, actor)
    # A second cancel must not restock twice.
    assert stock(db, product.id) == 10


@pytest.mark.parametrize("target", [OrderStatus.NEW, OrderStatus.ACCEPTED,
                                    OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED])
def test_client_may_only_cancel(service, users, product, target):
    order = service.create_order(users["alice"].id, product.id, 1)

    with pytest.raises(PermissionDenied, match="only cancel"):
        service.update_status(order.id, target, "alice@example.com")
    assert service.get_order(order.id).status == OrderStatus.NEW


def test_client_cannot_touch_someone_elses_order(db, service, users, product):
    order = service.create_order(users["alice"].id, product.id, 2)

    with pytest.raises(PermissionDenied):
        service.update_status(order.id, OrderStatus.CANCELLED, "bob@example.com")
    assert stock(db, product.id) == 8


def test_terminal_check_comes_before_ownership(service, users, product):
    order = service.create_order(users["alice"].id, product.id, 1)
    service.update_status(order.id, OrderStatus.DELIVERED, "manager@example.com")

    with pytest.raises(InvalidTransition):
        service.update_status(order.id, OrderStatus.CANCELLED, "bob@example.com")


def test_update_status_unknown_order_or_actor(service, users, product):
    order = service.create_order(users["alice"].id, product.id, 1)

    with pytest.raises(NotFound, match="Order"):
        service.update_status(9999, OrderStatus.CANCELLED, "alice@example.com")
    with pytest.raises(NotFound, match="User"):
        service.update_status(order.id, OrderStatus.CANCELLED, "ghost@example.com")


def test_update_status_unknown_status(service, users, product):
    order = service.create_order(users["alice"].id, product.id, 1)

    with pytest.raises(InvalidTransition, match="Unknown order status"):
        service.update_status(order.id, "LOST", "manager@example.com")
    with pytest.raises(NotFound):
        service.update_status(9999, "LOST", "manager@example.com")
    assert service.get_order(order.id).status == OrderStatus.NEW


def test_stock_never_negative_over_mixed_sequence(db, service, users, product):
    placed = []
    for who, qty in [("alice", 3), ("bob", 4), ("alice", 3)]:
        placed.append(service.create_order(users[who].id, product.id, qty))
    with pytest.raises(InsufficientStock):
        service.create_order(users["bob"].id, product.id, 1)

    service.update_status(placed[1].id, OrderStatus.CANCELLED, "bob@example.com")
    assert stock(db, product.id) == 4
    service.create_order(users["bob"].id, product.id, 4)
    assert stock(db, product.id) == 0


def test_allowed_statuses(service, users, product):
    order = service.create_order(users["alice"].id, product.id, 1)

    assert service.allowed_statuses(order.id, "alice@example.com") == [OrderStatus.CANCELLED]
    assert service.allowed_statuses(order.id, "manager@example.com") == list(OrderStatus)
    with pytest.raises(PermissionDenied):
        service.allowed_statuses(order.id, "bob@example.com")

    service.update_status(order.id, OrderStatus.CANCELLED, "alice@example.com")
    assert service.allowed_statuses(order.id, "root@example.com") == []


# Placing on behalf of someone

def test_client_places_order_for_self(service, users, product):
    order = service.place_order("alice@example.com", "alice@example.com", product.id, 2)
    assert order.user_id == users["alice"].id


def test_client_cannot_order_for_someone_else(db, service, users, product):
    with pytest.raises(PermissionDenied):
        service.place_order("alice@example.com", "bob@example.com", product.id, 2)
    assert stock(db, product.id) == 10


def test_manager_places_order_for_client(service, users, product):
    order = service.place_order("manager@example.com", "bob@example.com", product.id, 2)
    assert order.user_email == "bob@example.com"


# Search

@pytest.fixture
def order_book(db, service, users, product, clock):
    ProductService(db).create_product(ProductIn(
        name="MacBook Air", brand="Apple", category_id=product.category_id,
        price=Decimal("100.00"), quantity=5,
    ))
    macbook = ProductService(db).search_products()[1]

    first = service.create_order(users["alice"].id, product.id, 1)
    clock.advance(days=1)
    second = service.create_order(users["bob"].id, macbook.id, 1)
    clock.advance(days=1)
    third = service.create_order(users["alice"].id, macbook.id, 2)
    service.update_status(third.id, OrderStatus.ACCEPTED, "manager@example.com")
    return first, second, third


def ids(views):
    return [v.id for v in views]


def test_search_without_filters_returns_everything_by_id(service, order_book):
    assert ids(service.search_orders()) == ids(order_book)


def test_search_by_email_and_product_is_case_insensitive(service, order_book):
    first, second, third = order_book

    assert ids(service.search_orders(OrderFilter(user_email="ALICE"))) == [first.id, third.id]
    assert ids(service.search_orders(OrderFilter(product_name="macbook"))) == [second.id, third.id]
    assert ids(service.search_orders(OrderFilter(user_email="alice", product_name="MAC"))) == [third.id]


def test_blank_text_filters_are_ignored(service, order_book):
    assert len(service.search_orders(OrderFilter(user_email="  ", product_name=""))) == 3


def test_search_by_status_and_dates(service, order_book):
    first, second, third = order_book

    assert ids(service.search_orders(OrderFilter(status=OrderStatus.ACCEPTED))) == [third.id]
    assert ids(service.search_orders(OrderFilter(
        created_from=datetime(2024, 3, 2), created_to=datetime(2024, 3, 2, 23, 59, 59),
    ))) == [second.id]
    assert ids(service.search_orders(OrderFilter(created_to=datetime(2024, 3, 1, 12, 0, 0)))) == [first.id]
    assert ids(service.search_orders(OrderFilter(updated_from=datetime(2024, 3, 3)))) == [third.id]


def test_user_scoped_search_ignores_email_filter(service, users, order_book):
    first, second, third = order_book

    mine = service.search_user_orders(users["alice"].id, OrderFilter(user_email="bob"))
    assert ids(mine) == [first.id, third.id]
    assert ids(service.search_user_orders(users["bob"].id, OrderFilter(product_name="thinkpad"))) == []


def test_orders_for_user(service, users, order_book):
    assert len(service.orders_for_user(users["alice"].id)) == 2
    with pytest.raises(NotFound):
        service.orders_for_user(9999)


def test_read_model_reflects_current_user_and_product(db, service, users, order_book):
    UserService(db).update_user(users["bob"].id, UserUpdate(
        email="robert@example.com", first_name="Robert", last_name="Jones", role=users["bob"].role,
    ), "root@example.com")

    second = service.get_order(order_book[1].id)
    assert second.user_email == "robert@example.com"
    assert second.user_full_name == "Robert Jones"
