from contextlib import asynccontextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from digital_store.catalog_service import CategoryService, ProductService
from digital_store.config import configure_logging
from digital_store.database import Base, engine, get_db
from digital_store.exceptions import (
    Conflict,
    InsufficientStock,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    StoreError,
)
from digital_store.models import OrderStatus, Role
from digital_store.order_service import OrderService
from digital_store.schemas import (
    CategoryIn,
    OrderCreate,
    OrderFilter,
    OrderStatusUpdate,
    ProductFilter,
    ProductIn,
    ProfileUpdate,
    RegisterUserRequest,
    StatusChoices,
    UserCreate,
    UserFilter,
    UserUpdate,
)
from digital_store.security import get_current_user, require_roles, token_for
from digital_store.user_service import UserService

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Digital Store",
    description="Back office for the catalog, orders and users with role-based access control",
    version="1.0.0",
    lifespan=lifespan,
)

staff = require_roles(Role.MANAGER, Role.ADMIN)
admin_only = require_roles(Role.ADMIN)

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Conflict: status.HTTP_409_CONFLICT,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    InsufficientStock: status.HTTP_400_BAD_REQUEST,
    InvalidTransition: status.HTTP_400_BAD_REQUEST,
    InvalidQuantity: status.HTTP_400_BAD_REQUEST,
}


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=code, content={"detail": exc.message})


def day_start(value: Optional[date]):
    return datetime.combine(value, time.min) if value else None


def day_end(value: Optional[date]):
    return datetime.combine(value, time.max) if value else None


def parse_status(value: Optional[str]):
    """Unknown status names filter nothing out."""
    if not value:
        return None
    try:
        return OrderStatus(value)
    except ValueError:
        return None


@app.get("/", tags=["Root"])
def read_root():
    return {"message": "Digital Store is running!"}


# Authentication
@app.post("/register", tags=["Users"], summary="Register a new user", status_code=status.HTTP_201_CREATED)
def register_user(request: RegisterUserRequest, db: Session = Depends(get_db)):
    return UserService(db).register(request)


@app.post("/token", tags=["Authentication"], summary="Generate an access token")
def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = UserService(db).authenticate(form_data.username, form_data.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    return {"access_token": token_for(user), "token_type": "bearer"}


# Categories
@app.get("/api/categories", tags=["Categories"], summary="List all categories")
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_categories()


@app.get("/api/categories/search", tags=["Categories"], summary="Search categories by name")
def search_categories(name: Optional[str] = None, db: Session = Depends(get_db)):
    return CategoryService(db).search_categories(name)


@app.get("/api/categories/{category_id}", tags=["Categories"])
def get_category(category_id: int, db: Session = Depends(get_db)):
    return CategoryService(db).get_category(category_id)


@app.post("/api/categories", tags=["Categories"], status_code=status.HTTP_201_CREATED)
def create_category(data: CategoryIn, db: Session = Depends(get_db), user=Depends(staff)):
    return CategoryService(db).create_category(data)


@app.put("/api/categories/{category_id}", tags=["Categories"])
def update_category(category_id: int, data: CategoryIn, db: Session = Depends(get_db), user=Depends(staff)):
    return CategoryService(db).update_category(category_id, data)


@app.delete("/api/categories/{category_id}", tags=["Categories"])
def delete_category(category_id: int, db: Session = Depends(get_db), user=Depends(staff)):
    CategoryService(db).delete_category(category_id)
    return {"message": "Category deleted successfully"}


# Products
@app.get("/api/products", tags=["Products"], summary="List and filter products")
def list_products(
    name: Optional[str] = None,
    brand: Optional[str] = None,
    category_name: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    min_quantity: Optional[int] = None,
    max_quantity: Optional[int] = None,
    db: Session = Depends(get_db),
):
    filters = ProductFilter(
        name=name, brand=brand, category_name=category_name, min_price=min_price,
        max_price=max_price, min_quantity=min_quantity, max_quantity=max_quantity,
    )
    return ProductService(db).search_products(filters)


@app.get("/api/products/{product_id}", tags=["Products"])
def get_product(product_id: int, db: Session = Depends(get_db)):
    return ProductService(db).get_product(product_id)


@app.post("/api/products", tags=["Products"], summary="Add a new product", status_code=status.HTTP_201_CREATED)
def add_product(data: ProductIn, db: Session = Depends(get_db), user=Depends(staff)):
    return ProductService(db).create_product(data)


@app.put("/api/products/{product_id}", tags=["Products"], summary="Update an existing product")
def update_product(product_id: int, data: ProductIn, db: Session = Depends(get_db), user=Depends(staff)):
    return ProductService(db).update_product(product_id, data)


@app.delete("/api/products/{product_id}", tags=["Products"], summary="Delete a product")
def delete_product(product_id: int, db: Session = Depends(get_db), user=Depends(staff)):
    ProductService(db).delete_product(product_id)
    return {"message": "Product deleted successfully"}


# Order Management
@app.get("/api/orders", tags=["Orders"], summary="List orders, filtered")
def list_orders(
    user_email: Optional[str] = None,
    product_name: Optional[str] = None,
    order_status: Optional[str] = Query(None, alias="status"),
    created_from: Optional[date] = None,
    created_to: Optional[date] = None,
    updated_from: Optional[date] = None,
    updated_to: Optional[date] = None,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    filters = OrderFilter(
        user_email=user_email,
        product_name=product_name,
        status=parse_status(order_status),
        created_from=day_start(created_from),
        created_to=day_end(created_to),
        updated_from=day_start(updated_from),
        updated_to=day_end(updated_to),
    )
    service = OrderService(db)
    if user.role == Role.CLIENT:
        return service.search_user_orders(user.id, filters)
    return service.search_orders(filters)


@app.post("/api/orders", tags=["Orders"], summary="Create a new order", status_code=status.HTTP_201_CREATED)
def create_order(data: OrderCreate, db: Session = Depends(get_db), user=Depends(get_current_user)):
    return OrderService(db).place_order(user.email, data.user_email, data.product_id, data.quantity)


@app.get("/api/orders/{order_id}", tags=["Orders"])
def get_order(order_id: int, db: Session = Depends(get_db), user=Depends(staff)):
    return OrderService(db).get_order(order_id)


@app.get("/api/orders/{order_id}/statuses", tags=["Orders"], summary="Statuses the caller may set",
         response_model=StatusChoices)
def get_status_choices(order_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    statuses = OrderService(db).allowed_statuses(order_id, user.email)
    return StatusChoices(order_id=order_id, statuses=statuses)


@app.put("/api/orders/{order_id}/status", tags=["Orders"], summary="Update the status of an order")
def update_order_status(order_id: int, data: OrderStatusUpdate, db: Session = Depends(get_db),
                        user=Depends(get_current_user)):
    return OrderService(db).update_status(order_id, data.status, user.email)


@app.get("/api/users/{user_id}/orders", tags=["Orders"], summary="Get customer-specific orders")
def get_customer_orders(user_id: int, db: Session = Depends(get_db), user=Depends(staff)):
    return OrderService(db).orders_for_user(user_id)


# Profile
@app.get("/api/users/me", tags=["Users"])
def read_profile(db: Session = Depends(get_db), user=Depends(get_current_user)):
    return UserService(db).get_user(user.id)


@app.put("/api/users/me", tags=["Users"], summary="Edit own profile")
def update_profile(data: ProfileUpdate, db: Session = Depends(get_db), user=Depends(get_current_user)):
    service = UserService(db)
    result = service.update_profile(user.id, data, user.email)
    # The old token names the old email; hand out one for the new identity.
    refreshed = service.users.get_by_email(result.refreshed_identity)
    return {**result.model_dump(mode="json"), "access_token": token_for(refreshed), "token_type": "bearer"}


# User administration
@app.get("/api/users", tags=["Users"], summary="List and filter users")
def list_users(
    email: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    role: Optional[Role] = None,
    created_from: Optional[date] = None,
    created_to: Optional[date] = None,
    updated_from: Optional[date] = None,
    updated_to: Optional[date] = None,
    db: Session = Depends(get_db),
    user=Depends(admin_only),
):
    filters = UserFilter(
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        created_from=day_start(created_from),
        created_to=day_end(created_to),
        updated_from=day_start(updated_from),
        updated_to=day_end(updated_to),
    )
    return UserService(db).search_users(filters)


@app.post("/api/users", tags=["Users"], status_code=status.HTTP_201_CREATED)
def create_user(data: UserCreate, db: Session = Depends(get_db), user=Depends(admin_only)):
    return UserService(db).create_user(data)


@app.get("/api/users/{user_id}", tags=["Users"])
def get_user(user_id: int, db: Session = Depends(get_db), user=Depends(admin_only)):
    return UserService(db).get_user(user_id)


@app.put("/api/users/{user_id}", tags=["Users"])
def update_user(user_id: int, data: UserUpdate, db: Session = Depends(get_db), user=Depends(admin_only)):
    service = UserService(db)
    result = service.update_user(user_id, data, user.email)
    body = result.model_dump(mode="json")
    if result.refreshed_identity:
        refreshed = service.users.get_by_email(result.refreshed_identity)
        body.update({"access_token": token_for(refreshed), "token_type": "bearer"})
    return body


@app.delete("/api/users/{user_id}", tags=["Users"])
def delete_user(user_id: int, db: Session = Depends(get_db), user=Depends(admin_only)):
    UserService(db).delete_user(user_id)
    return {"message": "User deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
