"""Proxy objects for the caller identity and the active passkeys extension."""

from quart import current_app, g
from werkzeug.local import LocalProxy


def get_current_identity() -> str | None:
    """User id resolved from the request's bearer token, if any."""
    return getattr(g, "_passkey_identity", None)


current_identity = LocalProxy(get_current_identity)


def _get_passkeys():
    return current_app.extensions["passkeys"]


_passkeys = LocalProxy(_get_passkeys)
