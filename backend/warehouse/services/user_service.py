# Overview: Keeps local User rows and identity provider accounts in step across their lifecycle.

"""
User lifecycle invariants

- The identity provider owns credentials; the local row owns attribution.
- Every active user carries an external_id.
- At least one active MANAGER exists at all times. The check runs against a
  locked count inside the same transaction as the demotion/deactivation.
- Users are never hard-deleted: deactivation removes the provider account and
  sets active=False so audit entries keep resolving.

The provider and the database do not share a transaction. Each operation
orders the two writes as documented below and carries a best-effort
compensation for the second write failing. A compensation that itself fails is
logged and the original error is raised; the startup reconcile heals what is
left over.

IdP calls are not replayable, so operations run with a single attempt.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    ForbiddenError,
    IdpError,
    InvalidRoleTransitionError,
    NotFoundError,
    UserInactiveError,
    UsernameConflictError,
    ValidationError,
)
from ..extensions import db, get_idp
from ..models import Role, User
from .. import repositories
from .concurrency import begin_write, run_with_retry

logger = logging.getLogger(__name__)


def _get_user(user_id: int, *, lock: bool = False) -> User:
    user = repositories.find_by_id(User, user_id, lock=lock)
    if not user:
        raise NotFoundError("User", "id", user_id)
    return user


def _require_active(user: User) -> None:
    if not user.active:
        raise UserInactiveError(user.username)


def _require_link(user: User, operation: str) -> str:
    if not user.external_id:
        raise IdpError(operation, f"User '{user.username}' is not linked to the identity provider")
    return user.external_id


def _commit_or_compensate(operation: str, compensate) -> None:
    """Commit the local write; on failure undo the provider write and re-raise."""
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Local %s failed, compensating in identity provider: %s", operation, exc)
        try:
            compensate()
        except IdpError as comp_exc:
            logger.error("Compensation for %s failed: %s", operation, comp_exc, exc_info=True)
        raise


def _persist_new_user(external_id: str, username: str, first_name, last_name, role: Role) -> User:
    user = User(
        external_id=external_id,
        username=username,
        first_name=first_name,
        last_name=last_name,
        role=role.value,
        active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


# Register

def register_user(
    username: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """
    Self-registration as EMPLOYEE.

    Order: provider account first, then the local row. If the local insert
    fails the provider account is deleted and IdpError is raised.
    """
    def _op():
        if repositories.username_exists(username):
            raise UsernameConflictError(username)

        idp = get_idp()
        external_id = idp.create_user(username, password, Role.EMPLOYEE, first_name, last_name)

        try:
            user = _persist_new_user(external_id, username, first_name, last_name, Role.EMPLOYEE)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Failed to save user %s locally: %s", username, exc)
            try:
                idp.delete_user(external_id)
                logger.info("Removed identity provider account %s after failed registration", external_id)
            except IdpError as comp_exc:
                logger.error(
                    "Failed to remove identity provider account %s after failed registration: %s",
                    external_id, comp_exc, exc_info=True,
                )
            raise IdpError("user registration", f"Failed to save user locally: {exc}") from exc

        logger.info("Registered user %s", username)
        return user

    return run_with_retry(_op, attempts=1)


# Update

def _apply_update(
    user: User,
    *,
    username: str | None,
    password: str | None,
    first_name: str | None,
    last_name: str | None,
    self_update: bool,
) -> User:
    _require_active(user)
    new_username = username if username and username != user.username else None

    if self_update and new_username:
        raise ForbiddenError("Users cannot change their own username")
    if new_username and repositories.username_exists(new_username):
        raise UsernameConflictError(new_username)

    external_id = _require_link(user, "user update")
    previous = {
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
    }

    idp = get_idp()
    idp.update_user(
        external_id,
        username=new_username,
        password=password or None,
        first_name=first_name or None,
        last_name=last_name or None,
    )

    if new_username:
        user.username = new_username
    if first_name:
        user.first_name = first_name
    if last_name:
        user.last_name = last_name

    def _restore():
        idp.update_user(
            external_id,
            username=previous["username"] if new_username else None,
            first_name=previous["first_name"] if first_name else None,
            last_name=previous["last_name"] if last_name else None,
        )

    _commit_or_compensate("user update", _restore)
    logger.info("Updated user %s", user.username)
    return user


def update_user(
    user_id: int,
    *,
    username: str | None = None,
    password: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """Manager edit of any active user. Username changes reach the provider immediately."""
    def _op():
        user = _get_user(user_id, lock=True)
        return _apply_update(
            user,
            username=username,
            password=password,
            first_name=first_name,
            last_name=last_name,
            self_update=False,
        )

    return run_with_retry(_op, attempts=1)


def update_current_user(
    current_username: str,
    *,
    username: str | None = None,
    password: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """Self edit; the caller may change names and password but not the username."""
    def _op():
        user = get_user_by_username(current_username)
        return _apply_update(
            user,
            username=username,
            password=password,
            first_name=first_name,
            last_name=last_name,
            self_update=True,
        )

    return run_with_retry(_op, attempts=1)


# Role changes

def _change_role(user_id: int, target: Role) -> User:
    def _op():
        begin_write()
        user = _get_user(user_id, lock=True)
        _require_active(user)

        current = Role.parse(user.role)
        if current == target:
            raise InvalidRoleTransitionError(user.username, current.value, target.value)

        if target == Role.EMPLOYEE and repositories.count_active_by_role(Role.MANAGER, lock=True) < 2:
            raise ValidationError("Cannot demote the last manager")

        external_id = _require_link(user, "role update")
        idp = get_idp()
        idp.set_role(external_id, target)

        user.role = target.value
        _commit_or_compensate("role update", lambda: idp.set_role(external_id, current))
        logger.info("Changed role of user %s from %s to %s", user.username, current.value, target.value)
        return user

    return run_with_retry(_op, attempts=1)


def promote_user(user_id: int) -> User:
    return _change_role(user_id, Role.MANAGER)


def demote_user(user_id: int) -> User:
    return _change_role(user_id, Role.EMPLOYEE)


# Deactivation

def deactivate_user(user_id: int) -> User:
    """
    Soft delete: remove the provider account, then mark the row inactive.

    If the local write fails after the provider account is gone there is
    nothing to restore; the next reconcile deactivates the row.
    """
    def _op():
        begin_write()
        user = _get_user(user_id, lock=True)
        if not user.active:
            raise ValidationError("User is already inactive")

        if user.is_manager and repositories.count_active_by_role(Role.MANAGER, lock=True) <= 1:
            raise ValidationError("Cannot deactivate the last manager")

        if user.external_id:
            get_idp().delete_user(user.external_id)
        else:
            logger.warning("Deactivating user %s with no identity provider link", user.username)

        user.active = False
        try:
            db.session.commit()
        except SQLAlchemyError:
            logger.error(
                "Identity provider account for %s removed but local deactivation failed; "
                "startup reconcile will deactivate the row",
                user.username,
            )
            raise
        logger.info("Deactivated user %s", user.username)
        return user

    return run_with_retry(_op, attempts=1)


delete_user = deactivate_user


# Reads

def list_users(*, active_only: bool = False) -> list[User]:
    if active_only:
        return repositories.find_active_users()
    return repositories.find_all(User)


def get_user(user_id: int) -> User:
    return _get_user(user_id)


def get_user_by_username(username: str) -> User:
    user = repositories.find_user_by_username(username)
    if not user:
        raise NotFoundError("User", "username", username)
    return user
