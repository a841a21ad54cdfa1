from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import RequestValidationError, ValidationError
from .time_utils import parse_iso_datetime


# Maximum price accepted on products: 9,999,999,999.99 fits Numeric(12, 2)
MAX_PRICE = Decimal("9999999999.99")

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")
NAME_PATTERN = re.compile(r"^[a-zA-Z-]+$")


@dataclass(frozen=True)
class FieldRule:
    """
    One JSON body field.

    - key: JSON key (camelCase); attr: keyword the service takes (snake_case)
    - kind: "str", "int", "decimal" or "choice"
    - required: enforced on create (partial=False) only
    """
    key: str
    attr: str
    kind: str = "str"
    required: bool = False
    min_length: int | None = None
    max_length: int | None = None
    pattern: re.Pattern | None = None
    pattern_message: str | None = None
    min_value: int | None = None
    positive: bool = False
    choices: tuple[str, ...] = ()


def _coerce_int(rule: FieldRule, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError(f"{rule.key} must be an integer")
        if "e" in stripped.lower():
            raise ValueError(f"{rule.key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValueError(f"{rule.key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValueError(f"{rule.key} must be an integer")
    if isinstance(value, float):
        raise ValueError(f"{rule.key} must be an integer, not a decimal")
    raise ValueError(f"{rule.key} must be an integer")


def _coerce_decimal(rule: FieldRule, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{rule.key} must be a number")
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"{rule.key} must be a number")
    if not result.is_finite():
        raise ValueError(f"{rule.key} must be a number")
    return result


def _check(rule: FieldRule, value: Any):
    if rule.kind == "int":
        value = _coerce_int(rule, value)
        if rule.min_value is not None and value < rule.min_value:
            raise ValueError(f"{rule.key} must be at least {rule.min_value}")
        return value

    if rule.kind == "decimal":
        value = _coerce_decimal(rule, value)
        if rule.positive and value <= 0:
            raise ValueError(f"{rule.key} must be greater than 0")
        if value > MAX_PRICE:
            raise ValueError(f"{rule.key} cannot exceed {MAX_PRICE}")
        return value

    if not isinstance(value, str):
        raise ValueError(f"{rule.key} must be a string")
    value = value.strip()

    if rule.kind == "choice":
        upper = value.upper()
        if upper not in rule.choices:
            raise ValueError(f"{rule.key} must be one of {', '.join(rule.choices)}")
        return upper

    if rule.required and value == "":
        raise ValueError(f"{rule.key} cannot be blank")
    if rule.min_length is not None and len(value) < rule.min_length:
        raise ValueError(_length_message(rule))
    if rule.max_length is not None and len(value) > rule.max_length:
        raise ValueError(_length_message(rule))
    if rule.pattern is not None and value and not rule.pattern.match(value):
        raise ValueError(rule.pattern_message or f"{rule.key} has an invalid format")
    return value


def _length_message(rule: FieldRule) -> str:
    if rule.min_length is not None and rule.max_length is not None:
        return f"{rule.key} must be between {rule.min_length} and {rule.max_length} characters"
    if rule.min_length is not None:
        return f"{rule.key} must be at least {rule.min_length} characters"
    return f"{rule.key} cannot exceed {rule.max_length} characters"


def validate_payload(payload: Any, rules: tuple[FieldRule, ...], *, partial: bool = False) -> dict:
    """
    Validate and normalize a JSON body against field rules.

    Returns a dict keyed by FieldRule.attr with only the fields present.
    partial=False enforces required fields; partial=True validates only what
    was sent. Every field problem is collected and raised together as
    RequestValidationError(details).
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    by_key = {rule.key: rule for rule in rules}
    details: dict[str, str] = {}
    cleaned: dict = {}

    for key in payload:
        if key not in by_key:
            details[key] = f"Field not allowed: {key}"

    for rule in rules:
        if rule.key not in payload or payload[rule.key] is None:
            if rule.required and not partial:
                details[rule.key] = f"{rule.key} is required"
            continue
        try:
            cleaned[rule.attr] = _check(rule, payload[rule.key])
        except ValueError as exc:
            details[rule.key] = str(exc)

    if details:
        raise RequestValidationError(details)
    return cleaned


# Query string helpers

def query_int(args, key: str, *, default: int | None = None) -> int | None:
    raw = args.get(key)
    if raw is None or raw == "":
        return default
    try:
        return _coerce_int(FieldRule(key=key, attr=key, kind="int"), raw)
    except ValueError as exc:
        raise RequestValidationError({key: str(exc)})


def query_datetime(args, key: str) -> datetime | None:
    raw = args.get(key)
    if raw is None or raw == "":
        return None
    try:
        value = parse_iso_datetime(raw)
    except ValueError:
        value = None
    if value is None:
        raise RequestValidationError({key: f"{key} must be an ISO-8601 datetime"})
    return value


# Request bodies

_USERNAME = dict(
    min_length=3,
    max_length=50,
    pattern=USERNAME_PATTERN,
    pattern_message="Username can only contain letters, numbers, dots, underscores, and hyphens",
)
_PERSON_NAME = dict(
    max_length=100,
    pattern=NAME_PATTERN,
    pattern_message="Name can only contain letters and hyphens",
)

REGISTER_RULES = (
    FieldRule("username", "username", required=True, **_USERNAME),
    FieldRule("password", "password", required=True, min_length=8, max_length=128),
    FieldRule("firstName", "first_name", **_PERSON_NAME),
    FieldRule("lastName", "last_name", **_PERSON_NAME),
)

USER_UPDATE_RULES = (
    FieldRule("username", "username", **_USERNAME),
    FieldRule("password", "password", min_length=8, max_length=128),
    FieldRule("firstName", "first_name", **_PERSON_NAME),
    FieldRule("lastName", "last_name", **_PERSON_NAME),
)

STOCK_CREATE_RULES = (
    FieldRule("productId", "product_id", kind="int", required=True),
    FieldRule("warehouseId", "warehouse_id", kind="int", required=True),
    FieldRule("quantity", "quantity", kind="int", required=True, min_value=1),
)

STOCK_UPDATE_RULES = STOCK_CREATE_RULES + (
    FieldRule("operation", "operation", kind="choice", required=True, choices=("ADD", "REMOVE")),
)

STOCK_TRANSFER_RULES = (
    FieldRule("productId", "product_id", kind="int", required=True),
    FieldRule("sourceWarehouseId", "source_warehouse_id", kind="int", required=True),
    FieldRule("targetWarehouseId", "target_warehouse_id", kind="int", required=True),
    FieldRule("quantity", "quantity", kind="int", required=True, min_value=1),
)

CATEGORY_RULES = (
    FieldRule("name", "name", required=True, min_length=2, max_length=50),
)

PRODUCT_RULES = (
    FieldRule("name", "name", required=True, min_length=2, max_length=100),
    FieldRule("description", "description", max_length=1000),
    FieldRule("price", "price", kind="decimal", required=True, positive=True),
    FieldRule("categoryId", "category_id", kind="int", required=True),
)

WAREHOUSE_RULES = (
    FieldRule("name", "name", required=True, min_length=2, max_length=100),
    FieldRule("location", "location", required=True, min_length=2, max_length=200),
)
