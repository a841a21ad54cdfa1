# Overview: Flask API routes for categories, products and warehouses.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_role
from ..services import catalog_service
from ..validation import CATEGORY_RULES, PRODUCT_RULES, WAREHOUSE_RULES, validate_payload


categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")
products_bp = Blueprint("products", __name__, url_prefix="/api/products")
warehouses_bp = Blueprint("warehouses", __name__, url_prefix="/api/warehouses")


def _body(rules):
    # PUT replaces (required fields enforced); PATCH validates only what is sent
    return validate_payload(request.get_json(silent=True), rules, partial=request.method == "PATCH")


# Categories

@categories_bp.get("")
@require_auth
def list_categories():
    return jsonify([c.to_dict() for c in catalog_service.list_categories()]), 200


@categories_bp.get("/<int:category_id>")
@require_auth
def get_category(category_id: int):
    return jsonify(catalog_service.get_category(category_id).to_dict()), 200


@categories_bp.post("")
@require_role("MANAGER")
def create_category():
    data = validate_payload(request.get_json(silent=True), CATEGORY_RULES)
    category = catalog_service.create_category(**data)
    return jsonify(category.to_dict()), 201


@categories_bp.route("/<int:category_id>", methods=["PUT", "PATCH"])
@require_role("MANAGER")
def update_category(category_id: int):
    category = catalog_service.update_category(category_id, **_body(CATEGORY_RULES))
    return jsonify(category.to_dict()), 200


@categories_bp.delete("/<int:category_id>")
@require_role("MANAGER")
def delete_category(category_id: int):
    catalog_service.delete_category(category_id)
    return "", 204


# Products

@products_bp.get("")
@require_auth
def list_products():
    return jsonify([p.to_dict() for p in catalog_service.list_products()]), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    return jsonify(catalog_service.get_product(product_id).to_dict()), 200


@products_bp.get("/category/<int:category_id>")
@require_auth
def products_by_category(category_id: int):
    products = catalog_service.products_by_category(category_id)
    return jsonify([p.to_dict() for p in products]), 200


@products_bp.post("")
@require_role("MANAGER")
def create_product():
    data = validate_payload(request.get_json(silent=True), PRODUCT_RULES)
    product = catalog_service.create_product(**data)
    return jsonify(product.to_dict()), 201


@products_bp.route("/<int:product_id>", methods=["PUT", "PATCH"])
@require_role("MANAGER")
def update_product(product_id: int):
    product = catalog_service.update_product(product_id, **_body(PRODUCT_RULES))
    return jsonify(product.to_dict()), 200


@products_bp.delete("/<int:product_id>")
@require_role("MANAGER")
def delete_product(product_id: int):
    catalog_service.delete_product(product_id)
    return "", 204


# Warehouses

@warehouses_bp.get("")
@require_auth
def list_warehouses():
    return jsonify([w.to_dict() for w in catalog_service.list_warehouses()]), 200


@warehouses_bp.get("/<int:warehouse_id>")
@require_auth
def get_warehouse(warehouse_id: int):
    return jsonify(catalog_service.get_warehouse(warehouse_id).to_dict()), 200


@warehouses_bp.post("")
@require_role("MANAGER")
def create_warehouse():
    data = validate_payload(request.get_json(silent=True), WAREHOUSE_RULES)
    warehouse = catalog_service.create_warehouse(**data)
    return jsonify(warehouse.to_dict()), 201


@warehouses_bp.route("/<int:warehouse_id>", methods=["PUT", "PATCH"])
@require_role("MANAGER")
def update_warehouse(warehouse_id: int):
    warehouse = catalog_service.update_warehouse(warehouse_id, **_body(WAREHOUSE_RULES))
    return jsonify(warehouse.to_dict()), 200


@warehouses_bp.delete("/<int:warehouse_id>")
@require_role("MANAGER")
def delete_warehouse(warehouse_id: int):
    catalog_service.delete_warehouse(warehouse_id)
    return "", 204
