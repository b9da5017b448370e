"""Server halves of the WebAuthn registration and authentication ceremonies.

Each ceremony instance goes ``options issued -> consumed`` exactly once. The
stored challenge is removed by the verify call whatever its outcome, so a
second verify with the same challenge always fails with ``ChallengeNotFound``.
"""

from __future__ import annotations

import datetime
import logging
import secrets
from dataclasses import dataclass, field

from . import webauthn as wan
from .errors import (
    BadRequest,
    ChallengeNotFound,
    CredentialNotFound,
    IdentityMismatch,
    PasskeyError,
    Unauthorized,
    UpstreamUnavailable,
    VerificationFailed,
)
from .models import Challenge, ChallengeType, Credential, utcnow
from .signals import (
    passkey_authenticated,
    passkey_registered,
    passkey_verification_failed,
)
from .structs import AuthenticationResponse, RegistrationResponse

logger = logging.getLogger(__name__)

AUTHENTICATION_FAILED = "Authentication failed"


@dataclass
class CeremonySettings:
    rp_id: str
    rp_name: str
    expected_origin: str | list[str]
    challenge_timeout: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(minutes=5)
    )
    timeout_ms: int = 60000
    require_user_verification: bool = False


def _short(credential_id: str) -> str:
    return f"{credential_id[:8]}..." if len(credential_id) > 8 else credential_id


class _Ceremony:
    name = "ceremony"

    def __init__(self, challenges, credentials, settings: CeremonySettings, clock=utcnow):
        self.challenges = challenges
        self.credentials = credentials
        self.settings = settings
        self.clock = clock

    def _expires_at(self) -> datetime.datetime:
        return self.clock() + self.settings.challenge_timeout

    async def _reject(self, exc: PasskeyError):
        reason = exc.detail or exc.message
        logger.warning("Passkey %s rejected: %s", self.name, reason)
        await passkey_verification_failed.send_async(self, ceremony=self.name, reason=reason)


class RegistrationCeremony(_Ceremony):
    """Binds a new passkey to an already authenticated user."""

    name = "registration"

    @staticmethod
    def _check_caller(user_id, caller_id):
        if not caller_id:
            raise Unauthorized()
        if not user_id or caller_id != user_id:
            raise IdentityMismatch(detail=f"caller {caller_id} targeted {user_id!r}")

    async def generate_options(self, user_id: str, email: str, caller_id: str | None) -> dict:
        self._check_caller(user_id, caller_id)

        existing = await self.credentials.list_by_user(user_id)
        challenge = wan.generate_challenge()
        options = await wan.begin_registration(
            user_id,
            email or user_id,
            rp_id=self.settings.rp_id,
            rp_name=self.settings.rp_name,
            challenge=challenge,
            existing_credentials=existing,
            timeout=self.settings.timeout_ms,
        )

        # Overwrites any pending registration for this user.
        await self.challenges.put(
            Challenge(
                subject_key=user_id,
                challenge=wan.bytes_to_base64url(challenge),
                type=ChallengeType.REGISTRATION,
                expires_at=self._expires_at(),
            )
        )
        return wan.options_to_json_dict(options)

    async def verify_and_store(self, user_id: str, registration, caller_id: str | None) -> Credential:
        self._check_caller(user_id, caller_id)

        pending = await self.challenges.consume(
            user_id, ChallengeType.REGISTRATION, now=self.clock()
        )
        if pending is None:
            raise ChallengeNotFound()

        try:
            response = RegistrationResponse.from_json(registration)
            verification = await wan.complete_registration(
                response.to_json(),
                challenge=wan.base64url_to_bytes(pending.challenge),
                rp_id=self.settings.rp_id,
                expected_origin=self.settings.expected_origin,
                require_user_verification=self.settings.require_user_verification,
            )
        except (BadRequest, VerificationFailed) as exc:
            await self._reject(exc)
            raise

        credential = Credential(
            user_id=user_id,
            credential_id=verification["credential_id"],
            public_key=verification["public_key"],
            sign_count=verification["sign_count"],
            device_type=verification.get("device_type"),
            backed_up=verification.get("backed_up", False),
            transports=response.transports,
            created_at=self.clock(),
        )
        await self.credentials.insert(credential)

        logger.info(
            "Registered passkey %s for user %s",
            _short(credential.credential_id),
            user_id,
        )
        await passkey_registered.send_async(
            self,
            user_id=user_id,
            credential=credential,
            device_type=credential.device_type,
        )
        return credential


class AuthenticationCeremony(_Ceremony):
    """Signs in an anonymous browser with a previously registered passkey."""

    name = "authentication"

    def __init__(self, challenges, credentials, identity, settings, clock=utcnow):
        super().__init__(challenges, credentials, settings, clock=clock)
        self.identity = identity

    async def _hinted_credentials(self, email: str | None) -> list[Credential]:
        if not email:
            return []
        try:
            user_id = await self.identity.find_user_id(email)
            if user_id is None:
                return []
            return await self.credentials.list_by_user(user_id)
        except UpstreamUnavailable:
            # Hints are optional; the usernameless flow still works.
            logger.warning("Could not resolve passkeys for sign-in hint", exc_info=True)
            return []

    async def generate_options(self, email: str | None = None) -> tuple[dict, str]:
        email = (email or "").strip().lower() or None
        credentials = await self._hinted_credentials(email)

        challenge = wan.generate_challenge()
        options = await wan.begin_authentication(
            credentials,
            rp_id=self.settings.rp_id,
            challenge=challenge,
            timeout=self.settings.timeout_ms,
        )
        payload = wan.options_to_json_dict(options)
        if not credentials:
            payload.pop("allowCredentials", None)

        # Anonymous options requests leave rows behind.
        purged = await self.challenges.purge_expired(now=self.clock())
        if purged:
            logger.debug("Purged %d expired passkey challenges", purged)

        session_id = secrets.token_urlsafe(32)
        await self.challenges.put(
            Challenge(
                subject_key=session_id,
                challenge=wan.bytes_to_base64url(challenge),
                type=ChallengeType.AUTHENTICATION,
                email=email,
                expires_at=self._expires_at(),
            )
        )
        return payload, session_id

    async def _fail(self, exc_type, detail, cause=None):
        exc = exc_type(AUTHENTICATION_FAILED, detail=detail)
        await self._reject(exc)
        raise exc from cause

    async def verify_and_issue_session(self, authentication, session_id: str | None) -> dict:
        if not authentication or not session_id:
            raise BadRequest("Missing authentication data or session ID")

        pending = await self.challenges.consume(
            session_id, ChallengeType.AUTHENTICATION, now=self.clock()
        )
        if pending is None:
            raise ChallengeNotFound()

        # Malformed ids and unknown ids produce the same error.
        try:
            response = AuthenticationResponse.from_json(authentication)
        except BadRequest as exc:
            await self._fail(CredentialNotFound, exc.detail, cause=exc)

        stored = await self.credentials.find_by_credential_id(response.id)
        if stored is None:
            await self._fail(
                CredentialNotFound, f"unknown credential {_short(response.id)}"
            )

        if response.user_handle:
            try:
                handle = wan.base64url_to_bytes(response.user_handle)
            except ValueError:
                handle = None
            if handle != stored.user_id.encode("utf-8"):
                await self._fail(VerificationFailed, "user handle does not match owner")

        try:
            new_sign_count = await wan.complete_authentication(
                response.to_json(),
                challenge=wan.base64url_to_bytes(pending.challenge),
                rp_id=self.settings.rp_id,
                expected_origin=self.settings.expected_origin,
                stored_credential=stored,
                require_user_verification=self.settings.require_user_verification,
            )
        except VerificationFailed as exc:
            await self._fail(VerificationFailed, exc.detail, cause=exc)

        if not wan.check_sign_count(stored.sign_count, new_sign_count):
            await self._fail(
                VerificationFailed,
                f"sign count {new_sign_count} did not advance past {stored.sign_count}",
            )

        used_at = self.clock()
        updated = await self.credentials.update_sign_count(
            stored.id, stored.sign_count, new_sign_count, used_at
        )
        if not updated:
            await self._fail(VerificationFailed, "sign count changed concurrently")
        stored.sign_count = new_sign_count
        stored.last_used_at = used_at

        logger.info(
            "User %s signed in with passkey %s",
            stored.user_id,
            _short(stored.credential_id),
        )
        await passkey_authenticated.send_async(
            self, user_id=stored.user_id, credential=stored, method="passkey"
        )

        try:
            session = await self.identity.issue_session(stored.user_id)
        except UpstreamUnavailable:
            logger.warning(
                "Session issuance failed for user %s; client must sign in",
                stored.user_id,
                exc_info=True,
            )
            return {
                "success": True,
                "email": await self.identity.get_email(stored.user_id),
                "requiresLogin": True,
            }
        return {"success": True, "session": session}
