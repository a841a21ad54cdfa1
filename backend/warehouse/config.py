# backend/warehouse/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Application credentials (CRUD only)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///warehouse.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Admin credentials, used only by the startup schema/privilege phase
    DATABASE_ADMIN_URL = os.environ.get("DATABASE_ADMIN_URL")
    DB_NAME = os.environ.get("DB_NAME", "warehouse")
    DB_APP_USERNAME = os.environ.get("DB_APP_USERNAME")
    DB_APP_PASSWORD = os.environ.get("DB_APP_PASSWORD")

    # Identity provider (Keycloak admin REST API)
    IDP_BASE_URL = os.environ.get("IDP_BASE_URL", "http://localhost:8080")
    IDP_REALM = os.environ.get("IDP_REALM", "warehouse")
    IDP_ADMIN_REALM = os.environ.get("IDP_ADMIN_REALM", "master")
    IDP_ADMIN_CLIENT_ID = os.environ.get("IDP_ADMIN_CLIENT_ID", "admin-cli")
    IDP_ADMIN_USER = os.environ.get("IDP_ADMIN_USER", "admin")
    IDP_ADMIN_PASSWORD = os.environ.get("IDP_ADMIN_PASSWORD", "admin")
    IDP_TIMEOUT_SECONDS = float(os.environ.get("IDP_TIMEOUT_SECONDS", "10"))

    # Client key under resource_access holding client-level roles
    IDP_CLIENT_ID = os.environ.get("IDP_CLIENT_ID", "warehouse-app")

    # Initial manager created on first start
    APP_ADMIN_USERNAME = os.environ.get("APP_ADMIN_USERNAME", "admin")
    APP_ADMIN_PASSWORD = os.environ.get("APP_ADMIN_PASSWORD")
    APP_ADMIN_FIRST_NAME = os.environ.get("APP_ADMIN_FIRST_NAME", "Admin")
    APP_ADMIN_LAST_NAME = os.environ.get("APP_ADMIN_LAST_NAME", "User")

    STARTUP_TASKS_ENABLED = _env_bool("STARTUP_TASKS_ENABLED", True)
