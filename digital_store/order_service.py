import logging
from datetime import datetime

from sqlalchemy.orm import Session

from digital_store.database import transaction
from digital_store.exceptions import (
    InsufficientStock,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
    PermissionDenied,
)
from digital_store.models import TERMINAL_STATUSES, Order, OrderStatus, Role
from digital_store.repositories import OrderRepository, ProductRepository, UserRepository
from digital_store.schemas import OrderFilter, OrderView

log = logging.getLogger(__name__)


class OrderService:
    def __init__(self, db: Session, clock=datetime.now):
        self.db = db
        self.clock = clock
        self.users = UserRepository(db)
        self.products = ProductRepository(db)
        self.orders = OrderRepository(db)

    # Reads

    def get_order(self, order_id) -> OrderView:
        return OrderView.from_order(self._get_order(order_id))

    def list_orders(self):
        return [OrderView.from_order(o) for o in self.orders.all()]

    def orders_for_user(self, user_id):
        if self.users.get(user_id) is None:
            raise NotFound("User not found")
        return [OrderView.from_order(o) for o in self.orders.by_user(user_id)]

    def search_orders(self, filters: OrderFilter = None):
        """Search across all orders (managers and admins)."""
        filters = filters or OrderFilter()
        orders = self.orders.find_by_filters(
            email=filters.user_email,
            product_name=filters.product_name,
            status=filters.status,
            created_from=filters.created_from,
            created_to=filters.created_to,
            updated_from=filters.updated_from,
            updated_to=filters.updated_to,
        )
        return [OrderView.from_order(o) for o in orders]

    def search_user_orders(self, user_id, filters: OrderFilter = None):
        """Search one user's orders. Any email filter is ignored."""
        filters = filters or OrderFilter()
        orders = self.orders.find_by_filters(
            user_id=user_id,
            product_name=filters.product_name,
            status=filters.status,
            created_from=filters.created_from,
            created_to=filters.created_to,
            updated_from=filters.updated_from,
            updated_to=filters.updated_to,
        )
        return [OrderView.from_order(o) for o in orders]

    # Creation

    def create_order(self, user_id, product_id, quantity) -> OrderView:
        """Place an order and take the units out of stock.

        The total is captured now and never recomputed, even if the product
        price changes later.
        """
        if quantity is None or quantity < 1:
            raise InvalidQuantity("Quantity must be at least 1")

        with transaction(self.db):
            user = self.users.get(user_id)
            if user is None:
                raise NotFound("User not found")
            product = self.products.get(product_id)
            if product is None:
                raise NotFound("Product not found")

            if product.quantity < quantity:
                log.warning("Order for %d x product %s refused, %d on hand",
                            quantity, product.id, product.quantity)
                raise InsufficientStock(product.quantity)
            if not self.products.decrement_stock(product.id, quantity):
                # Another order took the stock between our read and our write.
                log.warning("Stock for product %s changed during order placement", product.id)
                raise InsufficientStock(product.quantity)

            now = self.clock()
            order = self.orders.add(Order(
                user=user,
                product=product,
                quantity=quantity,
                total_price=product.price * quantity,
                status=OrderStatus.NEW,
                created_at=now,
                updated_at=now,
            ))

        log.info("Order %s placed: user %s, product %s x %d", order.id, user.id, product.id, quantity)
        return OrderView.from_order(order)

    def place_order(self, actor_email, user_email, product_id, quantity) -> OrderView:
        """Place an order on behalf of ``user_email``.

        Clients may only order for themselves; managers and admins may order
        for anyone.
        """
        actor = self._resolve_actor(actor_email)
        if actor.role == Role.CLIENT and user_email != actor.email:
            log.warning("Client %s tried to order on behalf of %s", actor.email, user_email)
            raise PermissionDenied("You can only place orders in your own name")
        owner = self.users.get_by_email(user_email)
        if owner is None:
            raise NotFound("User not found")
        return self.create_order(owner.id, product_id, quantity)

    # Status changes

    def update_status(self, order_id, new_status, actor_email) -> OrderView:
        """Move an order to ``new_status``.

        Delivered and cancelled orders are frozen. Clients may only cancel
        their own orders; cancelling puts the units back in stock.
        """
        with transaction(self.db):
            order = self._get_order(order_id)
            actor = self._resolve_actor(actor_email)
            new_status = self._parse_status(new_status)
            self._check_modifiable(order)
            if actor.role == Role.CLIENT:
                self._check_owner(order, actor)
                if new_status != OrderStatus.CANCELLED:
                    log.warning("Client %s tried to set order %s to %s",
                                actor.email, order.id, new_status.value)
                    raise PermissionDenied("A client may only cancel an order")

            previous = order.status
            if not self.orders.change_status(order, previous, new_status, self.clock()):
                log.warning("Order %s changed status while %s was editing it", order.id, actor.email)
                raise InvalidTransition("Order status was changed by someone else, reload and retry")

            if new_status == OrderStatus.CANCELLED:
                self._restock(order)

        log.info("Order %s: %s -> %s by %s", order.id, previous.value, new_status.value, actor.email)
        return OrderView.from_order(order)

    def allowed_statuses(self, order_id, actor_email):
        """Statuses ``actor_email`` may move the order to right now."""
        order = self._get_order(order_id)
        actor = self._resolve_actor(actor_email)
        if actor.role == Role.CLIENT:
            self._check_owner(order, actor)
        if order.status in TERMINAL_STATUSES:
            return []
        if actor.role == Role.CLIENT:
            return [OrderStatus.CANCELLED]
        return list(OrderStatus)

    # Helpers

    def _get_order(self, order_id):
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    def _parse_status(self, value):
        try:
            return OrderStatus(value)
        except ValueError:
            raise InvalidTransition(f"Unknown order status: {value}") from None

    def _resolve_actor(self, email):
        actor = self.users.get_by_email(email)
        if actor is None:
            raise NotFound("User not found")
        return actor

    def _check_modifiable(self, order):
        if order.status == OrderStatus.CANCELLED:
            log.warning("Refused to modify cancelled order %s", order.id)
            raise InvalidTransition("Cannot modify a cancelled order")
        if order.status == OrderStatus.DELIVERED:
            log.warning("Refused to modify delivered order %s", order.id)
            raise InvalidTransition("Cannot modify a delivered order")

    def _check_owner(self, order, actor):
        if order.user_id != actor.id:
            log.warning("Client %s tried to touch order %s of user %s",
                        actor.email, order.id, order.user_id)
            raise PermissionDenied("You can only modify your own orders")

    def _restock(self, order):
        if not self.products.increment_stock(order.product_id, order.quantity):
            # Product was deleted under the order; nothing to put back.
            log.warning("Order %s cancelled but product %s no longer exists",
                        order.id, order.product_id)
            return
        log.info("Returned %d units of product %s to stock", order.quantity, order.product_id)
