"""Authentication decorators for the JSON endpoints."""

from functools import wraps

from quart import current_app

from .errors import Unauthorized
from .proxies import get_current_identity


def identity_required(func):
    """Require a bearer token that resolves to a user."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        if not get_current_identity():
            raise Unauthorized(detail="missing or invalid bearer token")
        return await current_app.ensure_async(func)(*args, **kwargs)

    return wrapper
