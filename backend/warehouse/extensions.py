# Overview: Flask extension instances for database, migrations and the identity provider.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


class IdentityProvider:
    """Holds the per-app identity provider client under app.extensions["idp"]."""

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        from .services.idp_client import IdpClient

        app.extensions["idp"] = IdpClient.from_config(app.config)

    @property
    def client(self):
        return current_app.extensions["idp"]


idp = IdentityProvider()


def get_idp():
    return idp.client
