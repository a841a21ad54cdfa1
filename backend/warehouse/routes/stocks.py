# Overview: Flask API routes for stock levels and movements; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_role
from ..security import current_user_id
from ..services import stock_service
from ..validation import (
    STOCK_CREATE_RULES,
    STOCK_TRANSFER_RULES,
    STOCK_UPDATE_RULES,
    validate_payload,
)


stocks_bp = Blueprint("stocks", __name__, url_prefix="/api/stocks")


@stocks_bp.get("")
@require_auth
def list_stocks():
    stocks = stock_service.list_stocks()
    return jsonify([stock.to_dict() for stock in stocks]), 200


@stocks_bp.get("/product/<int:product_id>")
@require_auth
def stocks_by_product(product_id: int):
    stocks = stock_service.stocks_by_product(product_id)
    return jsonify([stock.to_dict() for stock in stocks]), 200


@stocks_bp.get("/warehouse/<int:warehouse_id>")
@require_auth
def stocks_by_warehouse(warehouse_id: int):
    stocks = stock_service.stocks_by_warehouse(warehouse_id)
    return jsonify([stock.to_dict() for stock in stocks]), 200


@stocks_bp.get("/product/<int:product_id>/warehouse/<int:warehouse_id>")
@require_auth
def get_stock(product_id: int, warehouse_id: int):
    stock = stock_service.get_stock(product_id, warehouse_id)
    return jsonify(stock.to_dict()), 200


@stocks_bp.post("")
@require_role("MANAGER")
def create_stock():
    data = validate_payload(request.get_json(silent=True), STOCK_CREATE_RULES)
    stock = stock_service.create_stock(user_id=current_user_id(), **data)
    return jsonify(stock.to_dict()), 201


@stocks_bp.put("")
@require_role("MANAGER")
def update_stock():
    data = validate_payload(request.get_json(silent=True), STOCK_UPDATE_RULES)
    stock = stock_service.update_stock(user_id=current_user_id(), **data)
    return jsonify(stock.to_dict()), 200


@stocks_bp.post("/transfer")
@require_role("MANAGER")
def transfer_stock():
    data = validate_payload(request.get_json(silent=True), STOCK_TRANSFER_RULES)
    source, target = stock_service.transfer_stock(user_id=current_user_id(), **data)
    return jsonify({
        "productId": source.product_id,
        "quantity": data["quantity"],
        "source": source.to_dict(),
        "target": target.to_dict(),
    }), 200
