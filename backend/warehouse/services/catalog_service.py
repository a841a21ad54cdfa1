# Overview: CRUD for categories, products and warehouses with uniqueness and delete-blocking rules.

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateError, InUseError, NotFoundError
from ..extensions import db
from ..models import Category, Product, Warehouse
from .. import repositories
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)


def _get(model, entity_id: int, *, lock: bool = False):
    entity = repositories.find_by_id(model, entity_id, lock=lock)
    if not entity:
        raise NotFoundError(model.__name__, "id", entity_id)
    return entity


def _commit_unique(entity: str, name: str) -> None:
    """Commit; a concurrent insert that won the unique name surfaces as DuplicateError."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise DuplicateError(entity, "name", name) from exc


# Categories

def list_categories() -> list[Category]:
    return repositories.find_all(Category)


def get_category(category_id: int) -> Category:
    return _get(Category, category_id)


def create_category(name: str) -> Category:
    def _op():
        if repositories.category_name_exists(name):
            raise DuplicateError("Category", "name", name)
        category = Category(name=name)
        db.session.add(category)
        _commit_unique("Category", name)
        logger.info("Created category %s", name)
        return category

    return run_with_retry(_op)


def update_category(category_id: int, *, name: str | None = None) -> Category:
    def _op():
        category = _get(Category, category_id, lock=True)
        if name is not None and name != category.name:
            if repositories.category_name_exists(name, exclude_id=category.id):
                raise DuplicateError("Category", "name", name)
            category.name = name
        _commit_unique("Category", category.name)
        return category

    return run_with_retry(_op)


def delete_category(category_id: int) -> None:
    def _op():
        category = _get(Category, category_id, lock=True)
        products = repositories.find_products_by_category(category.id)
        if products:
            raise InUseError(
                f"Cannot delete category '{category.name}' because it has {len(products)} products"
            )
        repositories.delete(category)
        db.session.commit()
        logger.info("Deleted category %s", category.name)

    run_with_retry(_op)


# Products

def list_products() -> list[Product]:
    return repositories.find_all(Product)


def get_product(product_id: int) -> Product:
    return _get(Product, product_id)


def products_by_category(category_id: int) -> list[Product]:
    _get(Category, category_id)
    return repositories.find_products_by_category(category_id)


def create_product(
    name: str,
    price: Decimal,
    category_id: int,
    description: str | None = None,
) -> Product:
    def _op():
        if repositories.product_name_exists(name):
            raise DuplicateError("Product", "name", name)
        category = _get(Category, category_id)
        product = Product(name=name, description=description, price=price, category_id=category.id)
        db.session.add(product)
        _commit_unique("Product", name)
        logger.info("Created product %s", name)
        return product

    return run_with_retry(_op)


def update_product(
    product_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    price: Decimal | None = None,
    category_id: int | None = None,
) -> Product:
    def _op():
        product = _get(Product, product_id, lock=True)
        if name is not None and name != product.name:
            if repositories.product_name_exists(name, exclude_id=product.id):
                raise DuplicateError("Product", "name", name)
            product.name = name
        if category_id is not None:
            product.category_id = _get(Category, category_id).id
        if description is not None:
            product.description = description
        if price is not None:
            product.price = price
        _commit_unique("Product", product.name)
        return product

    return run_with_retry(_op)


def delete_product(product_id: int) -> None:
    def _op():
        product = _get(Product, product_id, lock=True)
        stocks = repositories.find_stocks_by_product(product.id)
        if stocks:
            raise InUseError(
                f"Cannot delete product '{product.name}' because it has {len(stocks)} stock entries"
            )
        repositories.delete(product)
        db.session.commit()
        logger.info("Deleted product %s", product.name)

    run_with_retry(_op)


# Warehouses

def list_warehouses() -> list[Warehouse]:
    return repositories.find_all(Warehouse)


def get_warehouse(warehouse_id: int) -> Warehouse:
    return _get(Warehouse, warehouse_id)


def create_warehouse(name: str, location: str) -> Warehouse:
    def _op():
        if repositories.warehouse_name_exists(name):
            raise DuplicateError("Warehouse", "name", name)
        warehouse = Warehouse(name=name, location=location)
        db.session.add(warehouse)
        _commit_unique("Warehouse", name)
        logger.info("Created warehouse %s", name)
        return warehouse

    return run_with_retry(_op)


def update_warehouse(
    warehouse_id: int,
    *,
    name: str | None = None,
    location: str | None = None,
) -> Warehouse:
    def _op():
        warehouse = _get(Warehouse, warehouse_id, lock=True)
        if name is not None and name != warehouse.name:
            if repositories.warehouse_name_exists(name, exclude_id=warehouse.id):
                raise DuplicateError("Warehouse", "name", name)
            warehouse.name = name
        if location is not None:
            warehouse.location = location
        _commit_unique("Warehouse", warehouse.name)
        return warehouse

    return run_with_retry(_op)


def delete_warehouse(warehouse_id: int) -> None:
    def _op():
        warehouse = _get(Warehouse, warehouse_id, lock=True)
        stocks = repositories.find_stocks_by_warehouse(warehouse.id)
        if stocks:
            raise InUseError(
                f"Cannot delete warehouse '{warehouse.name}' because it contains {len(stocks)} stock entries"
            )
        repositories.delete(warehouse)
        db.session.commit()
        logger.info("Deleted warehouse %s", warehouse.name)

    run_with_retry(_op)
