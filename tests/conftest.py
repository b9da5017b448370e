import datetime

import pytest
from authenticator import ORIGIN, RP_ID, SoftwareAuthenticator
from quart import Quart

from quart_passkeys import (
    AuthenticationCeremony,
    CeremonySettings,
    MemoryChallengeStore,
    MemoryCredentialRepository,
    Passkeys,
    RegistrationCeremony,
    SignedTokenIdentityProvider,
    UserDirectory,
)


class Clock:
    def __init__(self):
        self.now = datetime.datetime(2026, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def challenges():
    return MemoryChallengeStore()


@pytest.fixture
def credentials():
    return MemoryCredentialRepository()


@pytest.fixture
def directory():
    return UserDirectory(
        {
            "user-a": "alice@example.com",
            "user-b": "bob@example.com",
        }
    )


@pytest.fixture
def identity(directory):
    return SignedTokenIdentityProvider("test-secret", directory)


@pytest.fixture
def settings():
    return CeremonySettings(rp_id=RP_ID, rp_name="Example", expected_origin=ORIGIN)


@pytest.fixture
def authenticator():
    return SoftwareAuthenticator(origin=ORIGIN)


@pytest.fixture
def registration(challenges, credentials, settings, clock):
    return RegistrationCeremony(challenges, credentials, settings, clock=clock)


@pytest.fixture
def authentication(challenges, credentials, identity, settings, clock):
    return AuthenticationCeremony(challenges, credentials, identity, settings, clock=clock)


@pytest.fixture
def register_passkey(registration, authenticator):
    """Run a full registration for ``user_id`` and return the stored credential."""

    async def _register(user_id="user-a", email="alice@example.com", device=None):
        device = device or authenticator
        options = await registration.generate_options(user_id, email, user_id)
        response = await device.create(options)
        return await registration.verify_and_store(user_id, response, user_id)

    return _register


@pytest.fixture
def app(challenges, credentials, identity):
    app = Quart(__name__)
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        PASSKEY_RP_ID=RP_ID,
        PASSKEY_RP_NAME="Example",
        PASSKEY_EXPECTED_ORIGIN=ORIGIN,
    )
    Passkeys(app, challenges=challenges, credentials=credentials, identity=identity)

    @app.get("/")
    async def index():
        return "index"

    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def token_for(identity):
    def _token(user_id):
        return identity.serializer.dumps({"sub": user_id})

    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(user_id="user-a"):
        return {"Authorization": f"Bearer {token_for(user_id)}"}

    return _headers
