# Overview: Domain error hierarchy and the JSON error renderer registered on the app.

"""
Error contract

Services raise WarehouseError subclasses; routes never catch them. The
handlers registered by register_error_handlers() render every failure as

    {"timestamp", "status", "error", "message", "path"}

with "details" replacing "message" for field-level validation problems.
Anything that is not a WarehouseError becomes a 500 and is logged with stack.
"""

from __future__ import annotations

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from .time_utils import to_utc_z, utcnow


class WarehouseError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    error = "Application Error"
    kind = "INTERNAL"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WarehouseError):
    """400-level input or business-rule problem."""

    status_code = 400
    error = "Validation Error"
    kind = "VALIDATION"


class RequestValidationError(ValidationError):
    """Field-level request body problems, rendered as a details map."""

    def __init__(self, details: dict[str, str]):
        super().__init__("Request validation failed")
        self.details = details


class InvalidRoleTransitionError(ValidationError):
    error = "Invalid Operation"

    def __init__(self, username: str, current_role: str, target_role: str):
        super().__init__(
            f"Cannot change role for user '{username}' from {current_role} to {target_role}"
        )


class UnauthenticatedError(WarehouseError):
    status_code = 401
    error = "Unauthorized"
    kind = "UNAUTHENTICATED"


class ForbiddenError(WarehouseError):
    status_code = 403
    error = "Access Denied"
    kind = "FORBIDDEN"


class UserInactiveError(ForbiddenError):
    error = "User Inactive"

    def __init__(self, username: str):
        super().__init__(f"User is inactive: {username}")


class NotFoundError(WarehouseError):
    status_code = 404
    error = "Resource Not Found"
    kind = "NOT_FOUND"

    def __init__(self, entity: str, field: str, value):
        super().__init__(f"{entity} not found with {field} : {value}")
        self.entity = entity


class StockNotFoundError(NotFoundError):
    error = "Stock Not Found"
    kind = "STOCK_NOT_FOUND"

    def __init__(self, product_name: str, warehouse_name: str):
        WarehouseError.__init__(
            self, f"No stock found for product '{product_name}' in warehouse '{warehouse_name}'"
        )
        self.entity = "Stock"


class UsernameConflictError(WarehouseError):
    status_code = 409
    error = "Username Conflict"
    kind = "USERNAME_CONFLICT"

    def __init__(self, username: str | None):
        super().__init__(f"Username already exists: {username}")
        self.username = username


class DuplicateError(WarehouseError):
    status_code = 409
    error = "Resource Conflict"
    kind = "DUPLICATE"

    def __init__(self, entity: str, field: str, value):
        super().__init__(f"{entity} already exists with {field} : {value}")


class InUseError(WarehouseError):
    status_code = 409
    error = "Resource In Use"
    kind = "IN_USE"


class InsufficientStockError(WarehouseError):
    status_code = 409
    error = "Insufficient Stock"
    kind = "INSUFFICIENT_STOCK"

    def __init__(self, product_name: str, warehouse_name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product '{product_name}' in warehouse '{warehouse_name}'. "
            f"Requested: {requested}, Available: {available}"
        )
        self.requested = requested
        self.available = available


class SameWarehouseTransferError(WarehouseError):
    status_code = 409
    error = "Invalid Transfer"
    kind = "SAME_WAREHOUSE_TRANSFER"

    def __init__(self, warehouse_id):
        super().__init__(f"Cannot transfer stock to the same warehouse: {warehouse_id}")


class IdpError(WarehouseError):
    """The identity provider was unreachable or answered with an error."""

    status_code = 502
    error = "External Service Error"
    kind = "IDP_FAILURE"

    def __init__(self, operation: str, detail: str, upstream_status: int | None = None):
        super().__init__(f"Identity provider {operation} failed: {detail}")
        self.operation = operation
        self.detail = detail
        self.upstream_status = upstream_status


def _error_body(status: int, error: str, **extra) -> dict:
    body = {
        "timestamp": to_utc_z(utcnow()),
        "status": status,
        "error": error,
    }
    body.update(extra)
    body["path"] = request.path
    return body


def register_error_handlers(app) -> None:
    @app.errorhandler(WarehouseError)
    def handle_warehouse_error(exc: WarehouseError):
        if isinstance(exc, RequestValidationError):
            body = _error_body(exc.status_code, exc.error, details=exc.details)
        else:
            body = _error_body(exc.status_code, exc.error, message=exc.message)

        if exc.status_code >= 500:
            current_app.logger.error("%s: %s", exc.kind, exc.message, exc_info=exc)
        else:
            current_app.logger.info("%s: %s", exc.kind, exc.message)
        return jsonify(body), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        body = _error_body(exc.code or 500, exc.name, message=exc.description)
        return jsonify(body), exc.code or 500

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        current_app.logger.exception("Unhandled exception")
        body = _error_body(500, "Server Error", message="An unexpected error occurred")
        return jsonify(body), 500
