# Overview: Ordered startup phases: database/privileges, IdP reconcile, initial admin bootstrap.

"""
Startup phases (run once per process, in this order)

1. ensure_database(): create the database and application role when an admin
   URL for PostgreSQL is configured, grant CRUD privileges, create tables.
2. reconcile_users(): make the local users table mirror the identity
   provider. Skipped (not fatal) when the provider is unreachable.
3. bootstrap_admin(): make sure at least one MANAGER exists, creating or
   adopting the configured admin account.

Any exception from a phase aborts startup; the CLI and wsgi entrypoints turn
that into exit code 1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from ..errors import IdpError
from ..extensions import db, get_idp
from ..models import Role, User
from .. import repositories
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Raised when a startup phase cannot complete."""
    pass


@dataclass
class ReconcileResult:
    skipped: bool = False
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deactivated: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deactivated)


# Phase 1

def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _provision_postgres(admin_url: str, db_name: str, app_username: str | None, app_password: str | None) -> None:
    server_url = make_url(admin_url).set(database="postgres")
    engine = create_engine(server_url, isolation_level="AUTOCOMMIT")
    quote = engine.dialect.identifier_preparer.quote
    try:
        with engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
            ).first()
            if exists:
                logger.info("Database '%s' already exists", db_name)
            else:
                conn.execute(text(f"CREATE DATABASE {quote(db_name)}"))
                logger.info("Database '%s' created", db_name)
    finally:
        engine.dispose()

    if not app_username:
        return

    engine = create_engine(make_url(admin_url).set(database=db_name), isolation_level="AUTOCOMMIT")
    role = quote(app_username)
    try:
        with engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_roles WHERE rolname = :name"), {"name": app_username}
            ).first()
            if exists:
                logger.info("Application role '%s' already exists", app_username)
            else:
                conn.execute(
                    text(f"CREATE ROLE {role} LOGIN PASSWORD {_quote_literal(app_password or '')}")
                )
                logger.info("Application role '%s' created", app_username)

            for statement in (
                f"GRANT CONNECT ON DATABASE {quote(db_name)} TO {role}",
                f"GRANT USAGE ON SCHEMA public TO {role}",
                f"GRANT SELECT, INSERT, UPDATE, DELETE ON ALL TABLES IN SCHEMA public TO {role}",
                f"GRANT USAGE, SELECT ON ALL SEQUENCES IN SCHEMA public TO {role}",
                f"ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT SELECT, INSERT, UPDATE, DELETE ON TABLES TO {role}",
                f"ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT USAGE, SELECT ON SEQUENCES TO {role}",
            ):
                conn.execute(text(statement))
            logger.info("Privileges granted to application role '%s'", app_username)
    finally:
        engine.dispose()


def ensure_database() -> None:
    config = current_app.config
    admin_url = config.get("DATABASE_ADMIN_URL")

    if admin_url and make_url(admin_url).get_backend_name() == "postgresql":
        db_name = config.get("DB_NAME") or make_url(config["SQLALCHEMY_DATABASE_URI"]).database
        try:
            _provision_postgres(
                admin_url,
                db_name,
                config.get("DB_APP_USERNAME"),
                config.get("DB_APP_PASSWORD"),
            )
        except SQLAlchemyError as exc:
            raise StartupError(f"Failed to initialize database: {exc}") from exc
    elif admin_url:
        logger.info("Admin database URL is not PostgreSQL; skipping role provisioning")

    db.create_all()
    logger.info("Database schema is in place")


# Phase 2

def reconcile_users() -> ReconcileResult:
    """
    Mirror provider accounts into the users table.

    Idempotent: a second run over unchanged provider state changes nothing.
    """
    logger.info("Starting identity provider user synchronization")
    idp = get_idp()
    if not idp.available():
        logger.error("Identity provider is not available - skipping user synchronization")
        return ReconcileResult(skipped=True)

    remote = [(account, idp.primary_role(account.id) or Role.EMPLOYEE) for account in idp.list_all()]
    remote_ids = {account.id for account, _ in remote}
    logger.info("Found %d users in identity provider", len(remote))

    def _op():
        result = ReconcileResult()

        for account, role in remote:
            user = repositories.find_user_by_external_id(account.id)

            if user is None:
                # An unlinked (or stale-linked) row holding the same username is adopted
                user = repositories.find_user_by_username(account.username)
                if user is not None and user.external_id in remote_ids:
                    logger.warning(
                        "Username %s is linked to another identity provider account; skipping",
                        account.username,
                    )
                    continue
                if user is not None:
                    logger.info("Linking local user %s to identity provider account %s", user.username, account.id)
                    user.external_id = account.id
                    result.updated.append(account.username)
                else:
                    logger.info("Creating new local user for identity provider user: %s", account.username)
                    db.session.add(User(
                        external_id=account.id,
                        username=account.username,
                        first_name=account.first_name,
                        last_name=account.last_name,
                        role=role.value,
                        active=True,
                    ))
                    db.session.flush()
                    result.created.append(account.username)
                    continue

            dirty = False
            if user.username != account.username:
                clash = repositories.find_user_by_username(account.username)
                if clash is not None and clash.id != user.id:
                    logger.warning(
                        "Cannot rename local user %s to %s: username is taken",
                        user.username, account.username,
                    )
                else:
                    logger.info("Updating username for user %s: %s -> %s", account.id, user.username, account.username)
                    user.username = account.username
                    dirty = True
            if not user.active:
                logger.info("Activating user: %s", account.username)
                user.active = True
                dirty = True
            if user.role != role.value:
                logger.info("Updating role for user %s: %s -> %s", account.username, user.role, role.value)
                user.role = role.value
                dirty = True
            if dirty:
                db.session.flush()
                if account.username not in result.updated:
                    result.updated.append(account.username)

        for user in repositories.find_all(User):
            if user.external_id and user.external_id not in remote_ids and user.active:
                logger.info("Marking user as inactive (not found in identity provider): %s", user.username)
                user.active = False
                result.deactivated.append(user.username)

        db.session.commit()
        return result

    result = run_with_retry(_op)
    logger.info(
        "User synchronization completed: %d created, %d updated, %d deactivated",
        len(result.created), len(result.updated), len(result.deactivated),
    )
    return result


# Phase 3

def _validate_admin_settings(config) -> tuple[str, str]:
    username = config.get("APP_ADMIN_USERNAME")
    password = config.get("APP_ADMIN_PASSWORD")
    if not username:
        logger.error("Admin username not configured. Set APP_ADMIN_USERNAME.")
        raise StartupError("Admin username not configured")
    if not password:
        logger.error("Admin password not configured. Set APP_ADMIN_PASSWORD.")
        raise StartupError("Admin password not configured")
    return username, password


def bootstrap_admin() -> User | None:
    """
    Ensure a MANAGER exists. Returns the admin row, or None when skipped.

    The provider account is adopted when it already exists; a newly created
    one is deleted again if the local insert fails.
    """
    config = current_app.config
    username, password = _validate_admin_settings(config)
    logger.info("Starting initial admin setup")

    if repositories.role_exists(Role.MANAGER):
        logger.info("A manager user already exists, skipping initial admin setup")
        return None

    idp = get_idp()
    if not idp.available():
        raise StartupError("Identity provider is not available - cannot proceed with admin setup")
    if not idp.required_roles_exist():
        raise StartupError("Required roles do not exist in identity provider - cannot proceed with admin setup")

    created = False
    external_id = idp.find_id_by_username(username)
    if external_id:
        logger.info("Found existing admin user in identity provider with ID: %s", external_id)
        if not idp.has_role(external_id, Role.MANAGER):
            logger.info("Existing admin user is not a manager, assigning manager role")
            idp.set_role(external_id, Role.MANAGER)
    else:
        external_id = idp.create_user(
            username,
            password,
            Role.MANAGER,
            config.get("APP_ADMIN_FIRST_NAME"),
            config.get("APP_ADMIN_LAST_NAME"),
        )
        created = True
        logger.info("Admin user created in identity provider with ID: %s", external_id)

    try:
        user = repositories.find_user_by_username(username)
        if user is None:
            user = User(username=username)
            db.session.add(user)
        user.external_id = external_id
        user.role = Role.MANAGER.value
        user.active = True
        user.first_name = user.first_name or config.get("APP_ADMIN_FIRST_NAME")
        user.last_name = user.last_name or config.get("APP_ADMIN_LAST_NAME")
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Failed to create admin user in local database: %s", exc)
        if created:
            logger.info("Rolling back identity provider user creation")
            try:
                idp.delete_user(external_id)
            except IdpError:
                logger.error("Failed to delete identity provider user during rollback", exc_info=True)
        raise StartupError("Failed to create admin user in local database") from exc

    logger.info("Initial admin setup completed successfully")
    return user


def run_startup() -> None:
    ensure_database()
    reconcile_users()
    bootstrap_admin()
