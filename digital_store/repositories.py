from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from digital_store.models import Category, Order, Product, User


def _blank_to_none(value):
    if value is None or not value.strip():
        return None
    return value


def _contains(column, value):
    return func.lower(column).like(f"%{value.lower()}%")


def _in_range(query, column, lower, upper):
    if lower is not None:
        query = query.filter(column >= lower)
    if upper is not None:
        query = query.filter(column <= upper)
    return query


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id):
        return self.db.get(User, user_id)

    def get_by_email(self, email):
        return self.db.query(User).filter(User.email == email).first()

    def exists_by_email(self, email):
        return self.get_by_email(email) is not None

    def all(self):
        return self.db.query(User).order_by(User.id).all()

    def add(self, user):
        self.db.add(user)
        self.db.flush()
        return user

    def delete(self, user):
        self.db.delete(user)

    def find_by_filters(self, email=None, first_name=None, last_name=None, role=None,
                        created_from=None, created_to=None, updated_from=None, updated_to=None):
        query = self.db.query(User)
        if _blank_to_none(email):
            query = query.filter(_contains(User.email, email))
        if _blank_to_none(first_name):
            query = query.filter(_contains(User.first_name, first_name))
        if _blank_to_none(last_name):
            query = query.filter(_contains(User.last_name, last_name))
        if role is not None:
            query = query.filter(User.role == role)
        query = _in_range(query, User.created_at, created_from, created_to)
        query = _in_range(query, User.updated_at, updated_from, updated_to)
        return query.order_by(User.id).all()


class CategoryRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, category_id):
        return self.db.get(Category, category_id)

    def all(self):
        return self.db.query(Category).order_by(Category.id).all()

    def exists_by_name(self, name):
        return self.db.query(Category).filter(Category.name == name).first() is not None

    def add(self, category):
        self.db.add(category)
        self.db.flush()
        return category

    def delete(self, category):
        self.db.delete(category)

    def search(self, name_part=None):
        query = self.db.query(Category)
        if _blank_to_none(name_part):
            query = query.filter(_contains(Category.name, name_part))
        return query.order_by(Category.id).all()


class ProductRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, product_id):
        return self.db.get(Product, product_id)

    def all(self):
        return self.db.query(Product).options(joinedload(Product.category)).order_by(Product.id).all()

    def get_by_name_ignore_case(self, name):
        return self.db.query(Product).filter(func.lower(Product.name) == name.lower()).first()

    def add(self, product):
        self.db.add(product)
        self.db.flush()
        return product

    def delete(self, product):
        self.db.delete(product)

    def decrement_stock(self, product_id, quantity):
        """Take ``quantity`` units off the shelf if that many are on hand.

        The check and the write are one UPDATE statement, so two concurrent
        orders cannot both pass against the same stale count. Returns False
        when no row matched.
        """
        matched = (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.quantity >= quantity)
            .update({Product.quantity: Product.quantity - quantity}, synchronize_session=False)
        )
        self._expire_quantity(product_id)
        return matched == 1

    def increment_stock(self, product_id, quantity):
        matched = (
            self.db.query(Product)
            .filter(Product.id == product_id)
            .update({Product.quantity: Product.quantity + quantity}, synchronize_session=False)
        )
        self._expire_quantity(product_id)
        return matched == 1

    def _expire_quantity(self, product_id):
        product = self.db.identity_map.get(self.db.identity_key(Product, product_id))
        if product is not None:
            self.db.expire(product, ["quantity"])

    def find_by_filters(self, name=None, brand=None, category_name=None, min_price=None,
                        max_price=None, min_quantity=None, max_quantity=None):
        query = self.db.query(Product).join(Product.category).options(joinedload(Product.category))
        if _blank_to_none(name):
            query = query.filter(_contains(Product.name, name))
        if _blank_to_none(brand):
            query = query.filter(_contains(Product.brand, brand))
        if _blank_to_none(category_name):
            query = query.filter(func.lower(Category.name) == category_name.lower())
        query = _in_range(query, Product.price, min_price, max_price)
        query = _in_range(query, Product.quantity, min_quantity, max_quantity)
        return query.order_by(Product.id).all()


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def _with_parties(self):
        return self.db.query(Order).options(joinedload(Order.user), joinedload(Order.product))

    def get(self, order_id):
        return self._with_parties().filter(Order.id == order_id).first()

    def all(self):
        return self._with_parties().order_by(Order.id).all()

    def by_user(self, user_id):
        return self._with_parties().filter(Order.user_id == user_id).order_by(Order.id).all()

    def add(self, order):
        self.db.add(order)
        self.db.flush()
        return order

    def change_status(self, order, expected, new_status, updated_at):
        """Move ``order`` to ``new_status`` only if it is still ``expected``.

        Returns False when a concurrent request changed the status first.
        """
        matched = (
            self.db.query(Order)
            .filter(Order.id == order.id, Order.status == expected)
            .update({Order.status: new_status, Order.updated_at: updated_at}, synchronize_session=False)
        )
        self.db.expire(order, ["status", "updated_at"])
        return matched == 1

    def find_by_filters(self, email=None, user_id=None, product_name=None, product_id=None,
                        quantity=None, total_price=None, status=None, created_from=None,
                        created_to=None, updated_from=None, updated_to=None):
        query = (
            self.db.query(Order)
            .join(Order.user)
            .join(Order.product)
            .options(joinedload(Order.user), joinedload(Order.product))
        )
        if _blank_to_none(email):
            query = query.filter(_contains(User.email, email))
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        if _blank_to_none(product_name):
            query = query.filter(_contains(Product.name, product_name))
        if product_id is not None:
            query = query.filter(Order.product_id == product_id)
        if quantity is not None:
            query = query.filter(Order.quantity == quantity)
        if total_price is not None:
            query = query.filter(Order.total_price == total_price)
        if status is not None:
            query = query.filter(Order.status == status)
        query = _in_range(query, Order.created_at, created_from, created_to)
        query = _in_range(query, Order.updated_at, updated_from, updated_to)
        return query.order_by(Order.id).all()
