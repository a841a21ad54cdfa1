# Overview: Query helpers for every entity; all run on the request's db.session.

"""
Repository layer

Every helper reads through db.session so it observes the writes of the
enclosing transaction. Helpers taking lock=True issue SELECT ... FOR UPDATE
for rows the caller is about to mutate.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_

from .extensions import db
from .models import AuditEntry, Category, Product, Role, Stock, User, Warehouse
from .services.concurrency import lock_for_update


def find_by_id(model, entity_id: int, *, lock: bool = False):
    query = db.session.query(model).filter_by(id=entity_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def find_all(model) -> list:
    return db.session.query(model).order_by(model.id.asc()).all()


def delete(entity) -> None:
    db.session.delete(entity)
    db.session.flush()


# Catalog

def category_name_exists(name: str, *, exclude_id: int | None = None) -> bool:
    query = db.session.query(Category.id).filter(Category.name == name)
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    return query.first() is not None


def product_name_exists(name: str, *, exclude_id: int | None = None) -> bool:
    query = db.session.query(Product.id).filter(Product.name == name)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


def warehouse_name_exists(name: str, *, exclude_id: int | None = None) -> bool:
    query = db.session.query(Warehouse.id).filter(Warehouse.name == name)
    if exclude_id is not None:
        query = query.filter(Warehouse.id != exclude_id)
    return query.first() is not None


def find_products_by_category(category_id: int) -> list[Product]:
    return db.session.query(Product).filter_by(category_id=category_id).order_by(Product.id.asc()).all()


# Stock

def find_stock(product_id: int, warehouse_id: int, *, lock: bool = False) -> Stock | None:
    query = db.session.query(Stock).filter_by(product_id=product_id, warehouse_id=warehouse_id)
    if lock:
        query = lock_for_update(query)
    return query.one_or_none()


def find_stocks_by_product(product_id: int) -> list[Stock]:
    return db.session.query(Stock).filter_by(product_id=product_id).order_by(Stock.id.asc()).all()


def find_stocks_by_warehouse(warehouse_id: int) -> list[Stock]:
    return db.session.query(Stock).filter_by(warehouse_id=warehouse_id).order_by(Stock.id.asc()).all()


# Users

def find_user_by_username(username: str) -> User | None:
    return db.session.query(User).filter_by(username=username).first()


def find_user_by_external_id(external_id: str) -> User | None:
    return db.session.query(User).filter_by(external_id=external_id).first()


def username_exists(username: str) -> bool:
    return db.session.query(User.id).filter_by(username=username).first() is not None


def role_exists(role: Role) -> bool:
    return db.session.query(User.id).filter_by(role=Role(role).value).first() is not None


def find_active_users() -> list[User]:
    return db.session.query(User).filter_by(active=True).order_by(User.id.asc()).all()


def count_active_by_role(role: Role, *, lock: bool = False) -> int:
    """
    Count active users holding a role.

    With lock=True the matching rows are locked so a concurrent demotion or
    deactivation cannot read the same count.
    """
    query = db.session.query(User).filter_by(role=Role(role).value, active=True)
    if lock:
        return len(lock_for_update(query).all())
    return query.count()


# Audit

def find_recent_audit_entries(limit: int = 10) -> list[AuditEntry]:
    return (
        db.session.query(AuditEntry)
        .order_by(AuditEntry.timestamp.desc(), AuditEntry.id.desc())
        .limit(limit)
        .all()
    )


def audit_entry_query(
    *,
    user_id: int | None = None,
    product_id: int | None = None,
    warehouse_id: int | None = None,
    action: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    """Filtered audit query, newest first. warehouse_id matches source or target."""
    query = db.session.query(AuditEntry)
    if user_id is not None:
        query = query.filter(AuditEntry.user_id == user_id)
    if product_id is not None:
        query = query.filter(AuditEntry.product_id == product_id)
    if warehouse_id is not None:
        query = query.filter(
            or_(
                AuditEntry.warehouse_id == warehouse_id,
                AuditEntry.target_warehouse_id == warehouse_id,
            )
        )
    if action is not None:
        query = query.filter(AuditEntry.action == action)
    if start_date is not None:
        query = query.filter(AuditEntry.timestamp >= start_date)
    if end_date is not None:
        query = query.filter(AuditEntry.timestamp <= end_date)
    return query.order_by(AuditEntry.timestamp.desc(), AuditEntry.id.desc())
