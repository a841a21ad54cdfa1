# Overview: Stock mutation engine; every mutation locks its rows and journals one audit entry.

"""
Stock engine invariants

- Stock.quantity never drops below zero (service check + DB check constraint).
- Every successful mutation writes exactly one AuditEntry in the same
  transaction; a failed mutation writes neither stock nor audit.
- Rows being mutated are read with SELECT ... FOR UPDATE; on SQLite the
  transaction holds the database write lock from its first read.
- Transfer debits the source before crediting the target.
- A row drained to zero is kept.

Callers are authorized upstream (MANAGER); this layer trusts user_id.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..errors import (
    DuplicateError,
    InsufficientStockError,
    NotFoundError,
    SameWarehouseTransferError,
    StockNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import AuditAction, Product, Stock, Warehouse
from .. import repositories
from . import audit_service
from .concurrency import DEFAULT_RETRY_ON, begin_write, run_with_retry

logger = logging.getLogger(__name__)

# Two first-time credits of the same pair race on the unique constraint;
# the loser retries and finds the row.
STOCK_RETRY_ON = DEFAULT_RETRY_ON + (IntegrityError,)

OPERATIONS = (AuditAction.ADD.value, AuditAction.REMOVE.value)


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    return quantity


def _get_product(product_id: int) -> Product:
    product = repositories.find_by_id(Product, product_id)
    if not product:
        raise NotFoundError("Product", "id", product_id)
    return product


def _get_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = repositories.find_by_id(Warehouse, warehouse_id)
    if not warehouse:
        raise NotFoundError("Warehouse", "id", warehouse_id)
    return warehouse


def _credit(product: Product, warehouse: Warehouse, quantity: int) -> Stock:
    stock = repositories.find_stock(product.id, warehouse.id, lock=True)
    if stock is None:
        stock = Stock(product_id=product.id, warehouse_id=warehouse.id, quantity=quantity)
        db.session.add(stock)
    else:
        stock.quantity += quantity
    db.session.flush()
    return stock


def _debit(product: Product, warehouse: Warehouse, quantity: int) -> Stock:
    stock = repositories.find_stock(product.id, warehouse.id, lock=True)
    if stock is None:
        raise StockNotFoundError(product.name, warehouse.name)
    if stock.quantity < quantity:
        raise InsufficientStockError(product.name, warehouse.name, quantity, stock.quantity)
    stock.quantity -= quantity
    db.session.flush()
    return stock


def add_stock(product_id: int, warehouse_id: int, quantity: int, user_id: int) -> Stock:
    """Insert or increment the (product, warehouse) row and journal ADD."""
    _require_quantity(quantity)

    def _op():
        begin_write()
        product = _get_product(product_id)
        warehouse = _get_warehouse(warehouse_id)

        stock = _credit(product, warehouse, quantity)
        audit_service.record(
            user_id=user_id,
            action=AuditAction.ADD,
            product_id=product.id,
            warehouse_id=warehouse.id,
            quantity=quantity,
        )
        db.session.commit()
        logger.info(
            "Added %d of product %s to warehouse %s (now %d)",
            quantity, product.id, warehouse.id, stock.quantity,
        )
        return stock

    return run_with_retry(_op, retry_on=STOCK_RETRY_ON)


def create_stock(product_id: int, warehouse_id: int, quantity: int, user_id: int) -> Stock:
    """
    Create the initial row for a (product, warehouse) pair.

    Same as add_stock except an existing row is a DuplicateError.
    """
    _require_quantity(quantity)

    def _op():
        begin_write()
        product = _get_product(product_id)
        warehouse = _get_warehouse(warehouse_id)

        if repositories.find_stock(product.id, warehouse.id, lock=True) is not None:
            raise DuplicateError(
                "Stock", "product and warehouse", f"{product.name} / {warehouse.name}"
            )

        stock = Stock(product_id=product.id, warehouse_id=warehouse.id, quantity=quantity)
        db.session.add(stock)
        db.session.flush()
        audit_service.record(
            user_id=user_id,
            action=AuditAction.ADD,
            product_id=product.id,
            warehouse_id=warehouse.id,
            quantity=quantity,
        )
        db.session.commit()
        logger.info("Created stock for product %s in warehouse %s with %d", product.id, warehouse.id, quantity)
        return stock

    return run_with_retry(_op, retry_on=STOCK_RETRY_ON)


def remove_stock(product_id: int, warehouse_id: int, quantity: int, user_id: int) -> Stock:
    """Decrement the (product, warehouse) row and journal REMOVE."""
    _require_quantity(quantity)

    def _op():
        begin_write()
        product = _get_product(product_id)
        warehouse = _get_warehouse(warehouse_id)

        stock = _debit(product, warehouse, quantity)
        audit_service.record(
            user_id=user_id,
            action=AuditAction.REMOVE,
            product_id=product.id,
            warehouse_id=warehouse.id,
            quantity=quantity,
        )
        db.session.commit()
        logger.info(
            "Removed %d of product %s from warehouse %s (now %d)",
            quantity, product.id, warehouse.id, stock.quantity,
        )
        return stock

    return run_with_retry(_op)


def update_stock(product_id: int, warehouse_id: int, quantity: int, operation: str, user_id: int) -> Stock:
    """Dispatch an ADD or REMOVE adjustment."""
    op = (operation or "").upper()
    if op == AuditAction.ADD.value:
        return add_stock(product_id, warehouse_id, quantity, user_id)
    if op == AuditAction.REMOVE.value:
        return remove_stock(product_id, warehouse_id, quantity, user_id)
    raise ValidationError(f"Invalid operation: {operation}. Must be one of {', '.join(OPERATIONS)}")


def transfer_stock(
    product_id: int,
    source_warehouse_id: int,
    target_warehouse_id: int,
    quantity: int,
    user_id: int,
) -> tuple[Stock, Stock]:
    """
    Move units between two warehouses as one journaled TRANSFER.

    Returns (source_stock, target_stock) after the move.
    """
    if source_warehouse_id == target_warehouse_id:
        raise SameWarehouseTransferError(source_warehouse_id)
    _require_quantity(quantity)

    def _op():
        begin_write()
        product = _get_product(product_id)
        source = _get_warehouse(source_warehouse_id)
        target = _get_warehouse(target_warehouse_id)

        source_stock = _debit(product, source, quantity)
        target_stock = _credit(product, target, quantity)
        audit_service.record(
            user_id=user_id,
            action=AuditAction.TRANSFER,
            product_id=product.id,
            warehouse_id=source.id,
            target_warehouse_id=target.id,
            quantity=quantity,
        )
        db.session.commit()
        logger.info(
            "Transferred %d of product %s from warehouse %s to %s",
            quantity, product.id, source.id, target.id,
        )
        return source_stock, target_stock

    return run_with_retry(_op, retry_on=STOCK_RETRY_ON)


# Reads

def list_stocks() -> list[Stock]:
    return repositories.find_all(Stock)


def stocks_by_product(product_id: int) -> list[Stock]:
    _get_product(product_id)
    return repositories.find_stocks_by_product(product_id)


def stocks_by_warehouse(warehouse_id: int) -> list[Stock]:
    _get_warehouse(warehouse_id)
    return repositories.find_stocks_by_warehouse(warehouse_id)


def get_stock(product_id: int, warehouse_id: int) -> Stock:
    product = _get_product(product_id)
    warehouse = _get_warehouse(warehouse_id)
    stock = repositories.find_stock(product.id, warehouse.id)
    if stock is None:
        raise StockNotFoundError(product.name, warehouse.name)
    return stock
