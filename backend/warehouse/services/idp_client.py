# Overview: Typed client over the identity provider's admin REST API for one realm.

"""
Identity provider client

Wraps the Keycloak-style admin API of a single realm:

- Authentication: password grant against the admin realm with the admin
  client id; the access token is cached until shortly before expiry and
  refreshed once on a 401.
- Every request carries a bounded timeout (IDP_TIMEOUT_SECONDS).
- Transport and server failures surface as IdpError(operation, detail) with
  the original exception chained; a 409 on create/update surfaces as
  UsernameConflictError.
- create_user() deletes the half-created account if setting the password or
  assigning the role fails, so callers never inherit a partial account.

Only EMPLOYEE and MANAGER are meaningful realm roles here; any other realm
role a user carries (default roles, offline_access, ...) is ignored.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from ..errors import IdpError, UsernameConflictError
from ..models import Role

logger = logging.getLogger(__name__)

REQUIRED_ROLES = (Role.EMPLOYEE.value, Role.MANAGER.value)

# Refresh the admin token this many seconds before it actually expires
TOKEN_EXPIRY_SKEW_SECONDS = 30

LIST_PAGE_SIZE = 100


@dataclass(frozen=True)
class IdpUser:
    id: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_representation(cls, data: dict) -> "IdpUser":
        return cls(
            id=data["id"],
            username=data["username"],
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
        )


class IdpClient:
    def __init__(
        self,
        *,
        base_url: str,
        realm: str,
        admin_user: str,
        admin_password: str,
        admin_realm: str = "master",
        admin_client_id: str = "admin-cli",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.realm = realm
        self._admin_user = admin_user
        self._admin_password = admin_password
        self._admin_realm = admin_realm
        self._admin_client_id = admin_client_id
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_config(cls, config) -> "IdpClient":
        return cls(
            base_url=config["IDP_BASE_URL"],
            realm=config["IDP_REALM"],
            admin_user=config["IDP_ADMIN_USER"],
            admin_password=config["IDP_ADMIN_PASSWORD"],
            admin_realm=config.get("IDP_ADMIN_REALM", "master"),
            admin_client_id=config.get("IDP_ADMIN_CLIENT_ID", "admin-cli"),
            timeout=float(config.get("IDP_TIMEOUT_SECONDS", 10)),
        )

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # transport

    def _admin_token(self, *, force: bool = False) -> str:
        if not force and self._token and time.monotonic() < self._token_expires_at:
            return self._token

        response = self._http.post(
            f"/realms/{self._admin_realm}/protocol/openid-connect/token",
            data={
                "grant_type": "password",
                "client_id": self._admin_client_id,
                "username": self._admin_user,
                "password": self._admin_password,
            },
        )
        if response.status_code != 200:
            raise IdpError("authentication", f"HTTP Status: {response.status_code}, Response: {response.text}")

        payload = response.json()
        self._token = payload["access_token"]
        expires_in = int(payload.get("expires_in", 60))
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_SKEW_SECONDS, 0)
        return self._token

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"/admin/realms/{self.realm}{path}"
        headers = {"Authorization": f"Bearer {self._admin_token()}"}
        response = self._http.request(method, url, headers=headers, **kwargs)
        if response.status_code == 401:
            headers = {"Authorization": f"Bearer {self._admin_token(force=True)}"}
            response = self._http.request(method, url, headers=headers, **kwargs)
        return response

    def _call(self, operation: str, method: str, path: str, *, expected=(200, 201, 204), **kwargs) -> httpx.Response:
        try:
            response = self._request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Identity provider %s failed: %s", operation, exc, exc_info=True)
            raise IdpError(operation, str(exc)) from exc

        if response.status_code not in expected:
            detail = f"HTTP Status: {response.status_code}, Response: {response.text}"
            logger.error("Identity provider %s failed: %s", operation, detail)
            raise IdpError(operation, detail, upstream_status=response.status_code)
        return response

    def _role_representation(self, role: str, operation: str) -> dict:
        return self._call(operation, "GET", f"/roles/{role}").json()

    def _realm_roles(self, external_id: str, operation: str) -> list[dict]:
        return self._call(operation, "GET", f"/users/{external_id}/role-mappings/realm").json()

    def _search_exact(self, username: str, operation: str) -> list[dict]:
        users = self._call(
            operation,
            "GET",
            "/users",
            params={"username": username, "exact": "true"},
        ).json()
        return [u for u in users if u.get("username", "").lower() == username.lower()]

    def _set_password(self, external_id: str, password: str, operation: str) -> None:
        self._call(
            operation,
            "PUT",
            f"/users/{external_id}/reset-password",
            json={"type": "password", "value": password, "temporary": False},
        )

    # ------------------------------------------------------------------
    # mutations

    def create_user(
        self,
        username: str,
        password: str,
        role: Role | str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> str:
        """Create an enabled account with a permanent password and exactly one realm role."""
        role = Role.parse(role)
        logger.info("Creating identity provider user: %s", username)

        representation = {"username": username, "enabled": True, "emailVerified": True}
        if first_name:
            representation["firstName"] = first_name
        if last_name:
            representation["lastName"] = last_name

        try:
            response = self._request("POST", "/users", json=representation)
        except httpx.HTTPError as exc:
            logger.error("Identity provider user creation failed: %s", exc, exc_info=True)
            raise IdpError("user creation", str(exc)) from exc

        if response.status_code == 409:
            raise UsernameConflictError(username)
        if response.status_code not in (200, 201):
            raise IdpError(
                "user creation",
                f"HTTP Status: {response.status_code}, Response: {response.text}",
            )

        location = response.headers.get("Location", "")
        external_id = location.rstrip("/").rsplit("/", 1)[-1] if location else None
        if not external_id:
            raise IdpError("user creation", "Failed to get created user ID")
        logger.debug("Created identity provider user ID: %s", external_id)

        try:
            self._set_password(external_id, password, "password setting")
            role_rep = self._role_representation(role.value, "role assignment")
            self._call(
                "role assignment",
                "POST",
                f"/users/{external_id}/role-mappings/realm",
                json=[role_rep],
            )
        except IdpError:
            self._discard_partial_user(external_id)
            raise

        logger.info("Successfully created identity provider user: %s", username)
        return external_id

    def _discard_partial_user(self, external_id: str) -> None:
        try:
            self._call("user deletion", "DELETE", f"/users/{external_id}")
            logger.info("Rolled back identity provider user creation: %s", external_id)
        except IdpError:
            logger.error("Failed to roll back identity provider user creation: %s", external_id, exc_info=True)

    def update_user(
        self,
        external_id: str,
        username: str | None = None,
        password: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> None:
        """Update only the provided fields; the password reset is independent of the profile update."""
        logger.info("Updating identity provider user with ID: %s", external_id)

        changes = {}
        if username:
            changes["username"] = username
        if first_name:
            changes["firstName"] = first_name
        if last_name:
            changes["lastName"] = last_name

        if changes:
            current = self._call("user update", "GET", f"/users/{external_id}").json()
            current.update(changes)
            try:
                response = self._request("PUT", f"/users/{external_id}", json=current)
            except httpx.HTTPError as exc:
                logger.error("Identity provider user update failed: %s", exc, exc_info=True)
                raise IdpError("user update", str(exc)) from exc
            if response.status_code == 409:
                raise UsernameConflictError(username)
            if response.status_code not in (200, 204):
                raise IdpError(
                    "user update",
                    f"HTTP Status: {response.status_code}, Response: {response.text}",
                )

        if password:
            self._set_password(external_id, password, "password update")

    def set_role(self, external_id: str, role: Role | str) -> None:
        """Remove every current realm role, then grant exactly `role`."""
        role = Role.parse(role)
        logger.info("Updating role for identity provider user %s to %s", external_id, role.value)

        current = self._realm_roles(external_id, "role update")
        if current:
            self._call(
                "role update",
                "DELETE",
                f"/users/{external_id}/role-mappings/realm",
                json=current,
            )
        role_rep = self._role_representation(role.value, "role update")
        self._call(
            "role update",
            "POST",
            f"/users/{external_id}/role-mappings/realm",
            json=[role_rep],
        )

    def delete_user(self, external_id: str) -> None:
        logger.info("Deleting identity provider user with ID: %s", external_id)
        self._call("user deletion", "DELETE", f"/users/{external_id}")

    # ------------------------------------------------------------------
    # reads

    def exists_by_username(self, username: str) -> bool:
        return bool(self._search_exact(username, "user existence check"))

    def find_id_by_username(self, username: str) -> str | None:
        users = self._search_exact(username, "user ID lookup")
        return users[0]["id"] if users else None

    def has_role(self, external_id: str, role: Role | str) -> bool:
        role = Role.parse(role)
        roles = self._realm_roles(external_id, "role check")
        return any(r.get("name") == role.value for r in roles)

    def primary_role(self, external_id: str) -> Role | None:
        """MANAGER takes precedence over EMPLOYEE; None when neither is assigned."""
        names = {r.get("name") for r in self._realm_roles(external_id, "role retrieval")}
        if Role.MANAGER.value in names:
            return Role.MANAGER
        if Role.EMPLOYEE.value in names:
            return Role.EMPLOYEE
        return None

    def list_all(self) -> list[IdpUser]:
        users: list[IdpUser] = []
        first = 0
        while True:
            page = self._call(
                "user listing",
                "GET",
                "/users",
                params={"first": first, "max": LIST_PAGE_SIZE},
            ).json()
            if page is None:
                raise IdpError("user listing", "Received null response")
            users.extend(IdpUser.from_representation(u) for u in page)
            if len(page) < LIST_PAGE_SIZE:
                return users
            first += LIST_PAGE_SIZE

    def available(self) -> bool:
        try:
            self._call("availability check", "GET", "")
        except IdpError:
            logger.error("Identity provider is not available", exc_info=True)
            return False
        logger.info("Identity provider is available and configured correctly")
        return True

    def required_roles_exist(self) -> bool:
        for role in REQUIRED_ROLES:
            try:
                response = self._request("GET", f"/roles/{role}")
            except httpx.HTTPError:
                logger.error("Error verifying required role %s", role, exc_info=True)
                return False
            if response.status_code != 200:
                logger.error("%s role does not exist in the identity provider", role)
                return False
        logger.info("All required roles exist in the identity provider")
        return True
