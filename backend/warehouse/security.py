# Overview: Caller identity and authorities read from the upstream-verified bearer token.

"""
Authorization context

The API sits behind a gateway that has already verified the bearer token's
signature and expiry, so only the claims are read here.

Authorities are the union of realm roles (realm_access.roles) and the roles
of this application's client (resource_access[IDP_CLIENT_ID].roles), each
prefixed with ROLE_.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app, request
from jose import jwt
from jose.exceptions import JOSEError

from .errors import UnauthenticatedError
from .models import Role
from . import repositories

AUTHORITY_PREFIX = "ROLE_"


@dataclass(frozen=True)
class CallerContext:
    username: str | None
    authorities: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, role: Role | str) -> bool:
        name = role.value if isinstance(role, Role) else str(role)
        return f"{AUTHORITY_PREFIX}{name}" in self.authorities


def extract_authorities(claims: dict, client_id: str | None) -> frozenset[str]:
    roles: set[str] = set()

    realm_access = claims.get("realm_access") or {}
    roles.update(realm_access.get("roles") or [])

    if client_id:
        client_access = (claims.get("resource_access") or {}).get(client_id) or {}
        roles.update(client_access.get("roles") or [])

    return frozenset(f"{AUTHORITY_PREFIX}{role}" for role in roles)


def build_caller_context(token: str, client_id: str | None) -> CallerContext:
    try:
        claims = jwt.get_unverified_claims(token)
    except JOSEError as exc:
        raise UnauthenticatedError("Invalid bearer token") from exc

    return CallerContext(
        username=claims.get("preferred_username"),
        authorities=extract_authorities(claims, client_id),
    )


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def current_caller() -> CallerContext | None:
    """Caller for the current request, or None without a bearer token."""
    token = bearer_token()
    if not token:
        return None
    return build_caller_context(token, current_app.config.get("IDP_CLIENT_ID"))


def current_username() -> str | None:
    caller = current_caller()
    return caller.username if caller else None


def current_user_id() -> int:
    username = current_username()
    if not username:
        raise UnauthenticatedError("User not authenticated")
    user = repositories.find_user_by_username(username)
    if not user:
        raise UnauthenticatedError(f"User not found in local database: {username}")
    return user.id


def has_role(role: Role | str) -> bool:
    caller = current_caller()
    return bool(caller and caller.has_role(role))
