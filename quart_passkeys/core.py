"""Core extension initialization and bearer-token identity loading."""

from __future__ import annotations

import logging
from datetime import timedelta

from quart import g, request

logger = logging.getLogger(__name__)


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class Passkeys:
    """Quart extension serving the WebAuthn ceremony endpoints."""

    def __init__(self, app=None, challenges=None, credentials=None, identity=None):
        self.app = None
        self.challenges = challenges
        self.credentials = credentials
        self.identity = identity

        if app is not None:
            self.init_app(app, challenges=challenges, credentials=credentials, identity=identity)

    def init_app(self, app, challenges=None, credentials=None, identity=None):
        self.app = app
        if challenges is not None:
            self.challenges = challenges
        if credentials is not None:
            self.credentials = credentials
        if identity is not None:
            self.identity = identity
        if self.challenges is None or self.credentials is None:
            raise RuntimeError("Passkeys requires a challenge store and credential repository")
        if self.identity is None:
            raise RuntimeError("Passkeys requires an identity provider")

        self._load_defaults(app)

        from .views import passkeys_bp

        if "passkeys" not in app.blueprints:
            app.register_blueprint(
                passkeys_bp, url_prefix=app.config.get("PASSKEY_URL_PREFIX")
            )

        app.extensions["passkeys"] = self

        if not app.extensions.get("quart_passkeys_load_identity_registered", False):

            @app.before_request
            async def _passkeys_load_identity():
                await self.load_identity()

            app.extensions["quart_passkeys_load_identity_registered"] = True

        return self

    @staticmethod
    def _load_defaults(app):
        defaults = {
            "PASSKEY_RP_ID": None,
            "PASSKEY_RP_NAME": None,
            "PASSKEY_EXPECTED_ORIGIN": None,
            "PASSKEY_CHALLENGE_TIMEOUT": timedelta(minutes=5),
            "PASSKEY_CEREMONY_TIMEOUT_MS": 60000,
            "PASSKEY_REQUIRE_USER_VERIFICATION": False,
            "PASSKEY_URL_PREFIX": None,
            "PASSKEY_CORS_ALLOW_ORIGIN": "*",
            "PASSKEY_CORS_ALLOW_HEADERS": "authorization, x-client-info, apikey, content-type",
            "PASSKEY_SESSION_MAX_AGE": 3600,
        }

        for key, value in defaults.items():
            app.config.setdefault(key, value)

        # Values from the environment arrive as strings.
        timeout = app.config["PASSKEY_CHALLENGE_TIMEOUT"]
        if isinstance(timeout, (int, float, str)):
            app.config["PASSKEY_CHALLENGE_TIMEOUT"] = timedelta(seconds=int(timeout))

    async def load_identity(self):
        token = _bearer_token()
        if token is None:
            g._passkey_identity = None
            return

        g._passkey_identity = await self.identity.resolve_token(token)
        if g._passkey_identity is None:
            logger.info("Bearer token did not resolve to a user")
