# Overview: Service-layer operations for the stock audit journal.

"""
Audit journal invariants

- Append-only: entries are inserted, never updated or deleted.
- Entries are written inside the same DB transaction as the stock change they
  record; record() flushes but never commits and never retries.
- target_warehouse_id is set iff action is TRANSFER, and differs from the
  source warehouse.
- timestamp is the instant record() is called (naive UTC).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from ..errors import ValidationError
from ..extensions import db
from ..models import AuditAction, AuditEntry
from .. import repositories
from ..time_utils import utcnow

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
RECENT_LIMIT = 10


@dataclass
class Page:
    items: list
    page: int
    size: int
    total_elements: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return math.ceil(self.total_elements / self.size)

    def to_dict(self) -> dict:
        return {
            "content": [item.to_dict() for item in self.items],
            "page": self.page,
            "size": self.size,
            "totalElements": self.total_elements,
            "totalPages": self.total_pages,
        }


def record(
    *,
    user_id: int,
    action: AuditAction | str,
    product_id: int,
    warehouse_id: int,
    quantity: int,
    target_warehouse_id: int | None = None,
) -> AuditEntry:
    """
    Append one audit entry to the caller's transaction.

    A failing insert propagates and aborts the caller's operation.
    """
    action = AuditAction(action)
    if quantity is None or quantity <= 0:
        raise ValueError("Audit quantity must be positive")
    if action == AuditAction.TRANSFER:
        if target_warehouse_id is None:
            raise ValueError("TRANSFER audit requires a target warehouse")
        if target_warehouse_id == warehouse_id:
            raise ValueError("TRANSFER audit target must differ from source")
    elif target_warehouse_id is not None:
        raise ValueError(f"{action.value} audit must not carry a target warehouse")

    entry = AuditEntry(
        user_id=user_id,
        action=action.value,
        product_id=product_id,
        warehouse_id=warehouse_id,
        target_warehouse_id=target_warehouse_id,
        quantity=quantity,
        timestamp=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_entries(
    *,
    user_id: int | None = None,
    product_id: int | None = None,
    warehouse_id: int | None = None,
    action: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 0,
    size: int = DEFAULT_PAGE_SIZE,
) -> Page:
    """Filtered, paginated audit entries, newest first. warehouse_id matches source or target."""
    if page < 0:
        raise ValidationError("page must be zero or greater")
    if size < 1 or size > MAX_PAGE_SIZE:
        raise ValidationError(f"size must be between 1 and {MAX_PAGE_SIZE}")
    if action is not None:
        try:
            action = AuditAction(str(action).upper()).value
        except ValueError:
            raise ValidationError(f"Invalid audit action: {action}")
    if start_date and end_date and start_date > end_date:
        raise ValidationError("startDate must not be after endDate")

    query = repositories.audit_entry_query(
        user_id=user_id,
        product_id=product_id,
        warehouse_id=warehouse_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
    )
    total = query.order_by(None).count()
    items = query.offset(page * size).limit(size).all()
    return Page(items=items, page=page, size=size, total_elements=total)


def recent() -> list[AuditEntry]:
    return repositories.find_recent_audit_entries(RECENT_LIMIT)
