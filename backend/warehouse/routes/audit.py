# Overview: Flask API routes for the stock audit journal (read-only).

from flask import Blueprint, jsonify, request

from ..decorators import require_role
from ..services import audit_service
from ..validation import query_datetime, query_int


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("")
@require_role("MANAGER")
def list_audit_entries():
    args = request.args
    page = audit_service.list_entries(
        user_id=query_int(args, "userId"),
        product_id=query_int(args, "productId"),
        warehouse_id=query_int(args, "warehouseId"),
        action=args.get("action") or None,
        start_date=query_datetime(args, "startDate"),
        end_date=query_datetime(args, "endDate"),
        page=query_int(args, "page", default=0),
        size=query_int(args, "size", default=audit_service.DEFAULT_PAGE_SIZE),
    )
    return jsonify(page.to_dict()), 200


@audit_bp.get("/recent")
@require_role("MANAGER")
def recent_audit_entries():
    entries = audit_service.recent()
    return jsonify([entry.to_dict() for entry in entries]), 200
