"""Identity provider seam: bearer-token resolution, user lookup, session issuance."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class IdentityProvider(ABC):
    """Collaborator that owns users and sessions.

    The ceremonies never look inside a session; whatever ``issue_session``
    returns is handed to the client to exchange for an authenticated state.
    """

    @abstractmethod
    async def resolve_token(self, token: str) -> str | None:
        """Return the user id a bearer token belongs to."""
        raise NotImplementedError

    @abstractmethod
    async def find_user_id(self, email: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def get_email(self, user_id: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def issue_session(self, user_id: str) -> dict:
        raise NotImplementedError


class UserDirectory:
    """Minimal email <-> user id mapping used by ``SignedTokenIdentityProvider``."""

    def __init__(self, users: dict[str, str] | None = None):
        # user_id -> email
        self._users = dict(users or {})

    def add(self, user_id: str, email: str):
        self._users[user_id] = email

    async def lookup_user_id(self, email: str) -> str | None:
        wanted = (email or "").strip().lower()
        for user_id, known in self._users.items():
            if known.strip().lower() == wanted:
                return user_id
        return None

    async def lookup_email(self, user_id: str) -> str | None:
        return self._users.get(user_id)


class SignedTokenIdentityProvider(IdentityProvider):
    """Issues and resolves ``itsdangerous`` signed access tokens."""

    salt = "quart-passkeys-session"

    def __init__(self, secret_key: str, directory: UserDirectory, max_age: int = 3600):
        if not secret_key:
            raise RuntimeError("SignedTokenIdentityProvider requires a secret key")
        self.serializer = URLSafeTimedSerializer(secret_key, salt=self.salt)
        self.directory = directory
        self.max_age = max_age

    async def resolve_token(self, token: str) -> str | None:
        try:
            payload = self.serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            logger.info("Rejected expired access token")
            return None
        except BadSignature:
            return None
        if not isinstance(payload, dict):
            return None
        user_id = payload.get("sub")
        if not user_id or await self.directory.lookup_email(user_id) is None:
            return None
        return user_id

    async def find_user_id(self, email: str) -> str | None:
        return await self.directory.lookup_user_id(email)

    async def get_email(self, user_id: str) -> str | None:
        return await self.directory.lookup_email(user_id)

    async def issue_session(self, user_id: str) -> dict:
        email = await self.directory.lookup_email(user_id)
        if email is None:
            raise UpstreamUnavailable(detail=f"user {user_id} vanished before sign-in")
        return {
            "access_token": self.serializer.dumps({"sub": user_id}),
            "token_type": "bearer",
            "expires_in": self.max_age,
            "user": {"id": user_id, "email": email},
        }
