from __future__ import annotations

from enum import Enum

from ..extensions import db
from ..time_utils import to_utc_z


class AuditAction(str, Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"
    TRANSFER = "TRANSFER"


class Stock(db.Model):
    """
    On-hand count of one product in one warehouse.

    At most one row per (product_id, warehouse_id), enforced by the unique
    constraint. Quantity never drops below zero; a row drained to zero is
    kept.
    """
    __tablename__ = "stocks"
    __table_args__ = (
        db.UniqueConstraint("product_id", "warehouse_id", name="uq_stocks_product_warehouse"),
        db.CheckConstraint("quantity >= 0", name="ck_stocks_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")
    warehouse = db.relationship("Warehouse")

    def __repr__(self) -> str:
        return f"<Stock product_id={self.product_id} warehouse_id={self.warehouse_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "productName": self.product.name if self.product else None,
            "warehouseId": self.warehouse_id,
            "warehouseName": self.warehouse.name if self.warehouse else None,
            "quantity": self.quantity,
        }


class AuditEntry(db.Model):
    """
    Append-only journal of stock mutations.

    - Written in the same DB transaction as the stock change it records.
    - Never updated or deleted.
    - target_warehouse_id is set iff action is TRANSFER and differs from warehouse_id.
    """
    __tablename__ = "audit_entries"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_audit_quantity_positive"),
        db.CheckConstraint("action IN ('ADD', 'REMOVE', 'TRANSFER')", name="ck_audit_action_valid"),
        db.CheckConstraint(
            "(action = 'TRANSFER' AND target_warehouse_id IS NOT NULL AND target_warehouse_id <> warehouse_id)"
            " OR (action <> 'TRANSFER' AND target_warehouse_id IS NULL)",
            name="ck_audit_target_matches_action",
        ),
        db.Index("ix_audit_entries_timestamp", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    action = db.Column(db.String(16), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    target_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False)

    user = db.relationship("User")
    product = db.relationship("Product")
    warehouse = db.relationship("Warehouse", foreign_keys=[warehouse_id])
    target_warehouse = db.relationship("Warehouse", foreign_keys=[target_warehouse_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "username": self.user.username if self.user else None,
            "userRole": self.user.role if self.user else None,
            "action": self.action,
            "productId": self.product_id,
            "productName": self.product.name if self.product else None,
            "warehouseId": self.warehouse_id,
            "warehouseName": self.warehouse.name if self.warehouse else None,
            "targetWarehouseId": self.target_warehouse_id,
            "targetWarehouseName": self.target_warehouse.name if self.target_warehouse else None,
            "quantity": self.quantity,
            "timestamp": to_utc_z(self.timestamp),
        }
