# Overview: Request decorators that gate API routes on authentication and role.

from functools import wraps

from flask import request

from .errors import ForbiddenError, UnauthenticatedError
from .models import Role
from .security import current_caller


def require_auth(f):
    """
    Require a bearer token carrying a username.

    Raises UnauthenticatedError (401) when the Authorization header is
    missing, malformed, or the token has no preferred_username claim.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        caller = current_caller()
        if caller is None:
            raise UnauthenticatedError("Authentication required")
        if not caller.username:
            raise UnauthenticatedError("Token does not identify a user")
        return f(*args, **kwargs)

    return decorated_function


def require_role(role):
    """
    Require the caller to hold a role (realm or client level).

    Implies require_auth. Raises ForbiddenError (403) before the view runs.
    """
    role = Role.parse(role)

    def decorator(f):
        @require_auth
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_caller().has_role(role):
                raise ForbiddenError(
                    f"Access denied: {role.value} role required for {request.method} {request.path}"
                )
            return f(*args, **kwargs)

        return decorated_function
    return decorator
