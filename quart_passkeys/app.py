"""Application factory wiring the SQLAlchemy stores and the signed-token identity provider."""

from __future__ import annotations

from quart import Quart
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from .core import Passkeys
from .datastore import SQLAlchemyChallengeStore, SQLAlchemyCredentialRepository, create_tables
from .identity import SignedTokenIdentityProvider, UserDirectory


def create_app(config=None, directory: UserDirectory | None = None) -> Quart:
    app = Quart(__name__)
    # QUART_PASSKEY_RP_ID, QUART_PASSKEY_EXPECTED_ORIGIN, QUART_SECRET_KEY, ...
    app.config.from_prefixed_env("QUART")
    if config:
        app.config.update(config)
    app.config.setdefault("PASSKEY_DATABASE_URL", "sqlite+aiosqlite:///passkeys.db")

    engine = create_async_engine(app.config["PASSKEY_DATABASE_URL"])
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    identity = SignedTokenIdentityProvider(
        app.config.get("SECRET_KEY"),
        directory or UserDirectory(),
        max_age=int(app.config.get("PASSKEY_SESSION_MAX_AGE", 3600)),
    )
    Passkeys(
        app,
        challenges=SQLAlchemyChallengeStore(session_factory),
        credentials=SQLAlchemyCredentialRepository(session_factory),
        identity=identity,
    )

    @app.before_serving
    async def _create_tables():
        await create_tables(engine)

    @app.after_serving
    async def _dispose_engine():
        await engine.dispose()

    app.extensions["passkeys_engine"] = engine
    return app
