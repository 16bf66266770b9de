import logging

from sqlalchemy.orm import Session

from digital_store.database import transaction
from digital_store.exceptions import Conflict, NotFound
from digital_store.models import Category, Product
from digital_store.repositories import CategoryRepository, ProductRepository
from digital_store.schemas import CategoryIn, CategoryView, ProductFilter, ProductIn, ProductView

log = logging.getLogger(__name__)

CATEGORY_TAKEN = "A category with this name already exists"


class CategoryService:
    def __init__(self, db: Session):
        self.db = db
        self.categories = CategoryRepository(db)

    def list_categories(self):
        return [CategoryView.model_validate(c) for c in self.categories.all()]

    def get_category(self, category_id) -> CategoryView:
        return CategoryView.model_validate(self._get(category_id))

    def create_category(self, data: CategoryIn) -> CategoryView:
        with transaction(self.db, CATEGORY_TAKEN):
            if self.categories.exists_by_name(data.name):
                raise Conflict(CATEGORY_TAKEN)
            category = self.categories.add(Category(name=data.name, description=data.description))
        log.info("Category %s created: %s", category.id, category.name)
        return CategoryView.model_validate(category)

    def update_category(self, category_id, data: CategoryIn) -> CategoryView:
        with transaction(self.db, CATEGORY_TAKEN):
            category = self._get(category_id)
            if category.name != data.name and self.categories.exists_by_name(data.name):
                raise Conflict(CATEGORY_TAKEN)
            category.name = data.name
            category.description = data.description
        log.info("Category %s updated", category_id)
        return CategoryView.model_validate(category)

    def delete_category(self, category_id):
        with transaction(self.db):
            self.categories.delete(self._get(category_id))
        log.info("Category %s deleted", category_id)

    def search_categories(self, name_part=None):
        return [CategoryView.model_validate(c) for c in self.categories.search(name_part)]

    def _get(self, category_id):
        category = self.categories.get(category_id)
        if category is None:
            raise NotFound("Category not found")
        return category


class ProductService:
    def __init__(self, db: Session):
        self.db = db
        self.products = ProductRepository(db)
        self.categories = CategoryRepository(db)

    def list_products(self):
        return [ProductView.from_product(p) for p in self.products.all()]

    def get_product(self, product_id) -> ProductView:
        return ProductView.from_product(self._get(product_id))

    def create_product(self, data: ProductIn) -> ProductView:
        with transaction(self.db):
            if self.products.get_by_name_ignore_case(data.name) is not None:
                raise Conflict("A product with this name already exists")
            product = Product(
                name=data.name,
                brand=data.brand,
                category=self._get_category(data.category_id),
                price=data.price,
                quantity=data.quantity,
            )
            self.products.add(product)
        log.info("Product %s created: %s", product.id, product.name)
        return ProductView.from_product(product)

    def update_product(self, product_id, data: ProductIn) -> ProductView:
        with transaction(self.db):
            product = self._get(product_id)
            if (product.name.lower() != data.name.lower()
                    and self.products.get_by_name_ignore_case(data.name) is not None):
                raise Conflict("A product with this name already exists")
            product.name = data.name
            product.brand = data.brand
            product.category = self._get_category(data.category_id)
            product.price = data.price
            product.quantity = data.quantity
        log.info("Product %s updated", product_id)
        return ProductView.from_product(product)

    def delete_product(self, product_id):
        with transaction(self.db):
            self.products.delete(self._get(product_id))
        log.info("Product %s deleted", product_id)

    def search_products(self, filters: ProductFilter = None):
        filters = filters or ProductFilter()
        products = self.products.find_by_filters(**filters.model_dump())
        return [ProductView.from_product(p) for p in products]

    def _get(self, product_id):
        product = self.products.get(product_id)
        if product is None:
            raise NotFound("Product not found")
        return product

    def _get_category(self, category_id):
        category = self.categories.get(category_id)
        if category is None:
            raise NotFound("Category not found")
        return category
