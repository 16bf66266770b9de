from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from digital_store.catalog_service import CategoryService, ProductService
from digital_store.database import Base, get_db
from digital_store.main import app
from digital_store.models import Role
from digital_store.schemas import CategoryIn, ProductIn, UserCreate
from digital_store.security import pwd_context
from digital_store.user_service import UserService

PASSWORD = "secret123"


class FakeClock:
    """Deterministic stand-in for datetime.now."""

    def __init__(self, start=datetime(2024, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True, scope="session")
def fast_hashing():
    pwd_context.update(bcrypt__rounds=4)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'store.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users(db, clock):
    service = UserService(db, clock=clock)

    def make(email, role, first, last):
        return service.create_user(UserCreate(
            email=email, password=PASSWORD, first_name=first, last_name=last, role=role,
        ))

    return {
        "alice": make("alice@example.com", Role.CLIENT, "Alice", "Smith"),
        "bob": make("bob@example.com", Role.CLIENT, "Bob", "Jones"),
        "manager": make("manager@example.com", Role.MANAGER, "Mary", "Manager"),
        "admin": make("root@example.com", Role.ADMIN, "Ada", "Admin"),
    }


@pytest.fixture
def category(db):
    return CategoryService(db).create_category(CategoryIn(name="Laptops", description="Portable computers"))


@pytest.fixture
def product(db, category):
    return ProductService(db).create_product(ProductIn(
        name="ThinkPad X1", brand="Lenovo", category_id=category.id,
        price=Decimal("5.00"), quantity=10,
    ))


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    def do_login(email, password=PASSWORD):
        resp = client.post("/token", data={"username": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return do_login
