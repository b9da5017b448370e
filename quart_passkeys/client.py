"""Client half of the passkey ceremonies.

``PasskeyClient`` fetches options from the server, hands them to a
``PlatformAuthenticator`` (the browser's ``navigator.credentials`` or a
software token), and posts the signed result back. A user dismissing the
platform prompt is an ordinary outcome, not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from .errors import Cancelled, PasskeyError, UpstreamUnavailable

logger = logging.getLogger(__name__)

SUCCESS = "success"
CANCELLED = "cancelled"
ERROR = "error"

UNEXPECTED_ERROR = "An unexpected error occurred"

# DOMException name the platform uses when the user dismisses the prompt.
CANCEL_ERROR_NAMES = frozenset({"NotAllowedError"})


class AuthenticatorError(Exception):
    """Failure reported by the platform authenticator API."""

    def __init__(self, name: str, message: str = ""):
        self.name = name
        self.message = message or name
        super().__init__(f"{name}: {self.message}")


class PlatformAuthenticator:
    """Bridge to the platform WebAuthn API."""

    def is_supported(self) -> bool:
        return True

    async def is_platform_authenticator_available(self) -> bool:
        return False

    async def is_autofill_supported(self) -> bool:
        """Whether conditional mediation (passkeys in autofill) is available."""
        return False

    async def create(self, options: dict) -> dict:
        """Run ``navigator.credentials.create`` and return the JSON credential."""
        raise NotImplementedError

    async def get(self, options: dict) -> dict:
        """Run ``navigator.credentials.get`` and return the JSON credential."""
        raise NotImplementedError


@dataclass
class CeremonyResult:
    status: str
    error: str | None = None
    session: dict | None = None
    requires_login: bool = False
    email: str | None = None

    @property
    def success(self) -> bool:
        return self.status == SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.status == CANCELLED


class PasskeyClient:
    def __init__(
        self,
        base_url: str,
        authenticator: PlatformAuthenticator | None,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
        on_session=None,
    ):
        self.base_url = base_url.rstrip("/")
        self.authenticator = authenticator
        self.access_token = access_token
        self.transport = transport
        self.timeout = timeout
        self.on_session = on_session
        self.session: dict | None = None

    def is_supported(self) -> bool:
        if self.authenticator is None:
            return False
        try:
            return bool(self.authenticator.is_supported())
        except Exception:
            logger.debug("WebAuthn capability check failed", exc_info=True)
            return False

    async def is_platform_authenticator_available(self) -> bool:
        """Only used to tailor UI copy; never gate a ceremony on it."""
        if not self.is_supported():
            return False
        try:
            return bool(await self.authenticator.is_platform_authenticator_available())
        except Exception:
            logger.debug("Platform authenticator check failed", exc_info=True)
            return False

    async def is_autofill_supported(self) -> bool:
        if not self.is_supported():
            return False
        try:
            return bool(await self.authenticator.is_autofill_supported())
        except Exception:
            logger.debug("Autofill capability check failed", exc_info=True)
            return False

    async def _request(self, method: str, path: str, body=None, auth: bool = False):
        headers = {}
        if auth and self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, transport=self.transport, timeout=self.timeout
            ) as client:
                response = await client.request(method, path, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Passkey request to %s failed: %s", path, exc)
            raise UpstreamUnavailable("Could not reach the server") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            message = None
            if isinstance(payload, dict):
                message = payload.get("error")
            error = PasskeyError(message or f"Request failed ({response.status_code})")
            error.status_code = response.status_code
            raise error
        return payload

    async def _run_platform(self, step, options: dict, label: str):
        """Return the credential JSON, or a ``CeremonyResult`` for early exits."""
        try:
            return await step(options)
        except Cancelled:
            return CeremonyResult(CANCELLED, error=f"{label} was cancelled")
        except AuthenticatorError as exc:
            if exc.name in CANCEL_ERROR_NAMES:
                return CeremonyResult(CANCELLED, error=f"{label} was cancelled")
            return CeremonyResult(ERROR, error=exc.message)

    async def register(self, user_id: str, email: str) -> CeremonyResult:
        if not self.is_supported():
            return CeremonyResult(ERROR, error="WebAuthn is not supported on this platform")

        try:
            options = await self._request(
                "POST",
                "/webauthn-registration-options",
                {"userId": user_id, "email": email},
                auth=True,
            )
            registration = await self._run_platform(
                self.authenticator.create, options, "Registration"
            )
            if isinstance(registration, CeremonyResult):
                return registration

            await self._request(
                "POST",
                "/webauthn-registration-verify",
                {"userId": user_id, "registration": registration},
                auth=True,
            )
        except PasskeyError as exc:
            return CeremonyResult(ERROR, error=exc.message)
        except Exception:
            logger.exception("Passkey registration failed unexpectedly")
            return CeremonyResult(ERROR, error=UNEXPECTED_ERROR)
        return CeremonyResult(SUCCESS)

    async def authenticate(self, email: str | None = None) -> CeremonyResult:
        if not self.is_supported():
            return CeremonyResult(ERROR, error="WebAuthn is not supported on this platform")

        try:
            options = await self._request(
                "POST", "/webauthn-authentication-options", {"email": email}
            )
            session_id = options.pop("sessionId", None)
            authentication = await self._run_platform(
                self.authenticator.get, options, "Authentication"
            )
            if isinstance(authentication, CeremonyResult):
                return authentication

            data = await self._request(
                "POST",
                "/webauthn-authentication-verify",
                {"authentication": authentication, "sessionId": session_id},
            )
            if data.get("requiresLogin"):
                return CeremonyResult(SUCCESS, requires_login=True, email=data.get("email"))
            session = data.get("session")
        except PasskeyError as exc:
            return CeremonyResult(ERROR, error=exc.message)
        except Exception:
            logger.exception("Passkey sign-in failed unexpectedly")
            return CeremonyResult(ERROR, error=UNEXPECTED_ERROR)

        if session:
            self._apply_session(session)
        return CeremonyResult(SUCCESS, session=session)

    def _apply_session(self, session: dict):
        self.session = session
        if session.get("access_token"):
            self.access_token = session["access_token"]
        if self.on_session is not None:
            self.on_session(session)

    async def list_passkeys(self) -> list[dict]:
        data = await self._request("GET", "/passkeys", auth=True)
        return list(data.get("passkeys", []))

    async def delete_passkey(self, passkey_id: str) -> CeremonyResult:
        try:
            await self._request("DELETE", f"/passkeys/{passkey_id}", auth=True)
        except PasskeyError as exc:
            return CeremonyResult(ERROR, error=exc.message)
        return CeremonyResult(SUCCESS)
